import argparse
import logging
import os
import re
from typing import Any, Callable, Optional, Sequence, Union

import tiktoken

logger = logging.getLogger("gasnet_graph_api")
logger.setLevel(logging.INFO)

TRANSPORTS = ("rest", "stdio", "http", "sse")


def parse_boolean_safely(value: Union[str, bool]) -> bool:
    """
    Safely parse a string value to boolean with strict validation.

    Parameters
    ----------
    value : Union[str, bool]
        The value to parse to boolean.

    Returns
    -------
    bool
        The parsed boolean value.
    """

    if isinstance(value, bool):
        return value

    elif isinstance(value, str):
        normalized = value.strip().lower()
        if normalized == "true":
            return True
        elif normalized == "false":
            return False
        else:
            raise ValueError(
                f"Invalid boolean value: '{value}'. Must be 'true' or 'false'"
            )
    else:
        raise ValueError(f"Invalid boolean value: '{value}'. Must be 'true' or 'false'")


def parse_csv(value: Optional[str]) -> list[str]:
    """Split a comma-separated setting, dropping blanks."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _setting(
    cli_value: Any,
    env_names: Sequence[str],
    default: Any,
    label: str,
    cast: Callable[[str], Any] = str,
    warn: bool = False,
) -> Any:
    """
    Resolve one setting: CLI flag first, then the first set environment
    variable, then ``default``. A missing value is logged at WARNING when
    ``warn`` is set, otherwise at INFO.
    """
    if cli_value is not None:
        return cli_value

    for env_name in env_names:
        raw = os.getenv(env_name)
        if raw is None:
            continue
        try:
            return cast(raw)
        except ValueError:
            logger.warning(f"Warning: Invalid {label} in {env_name}: '{raw}'. Using default: {default}")
            return default

    if warn:
        logger.warning(f"Warning: No {label} provided. Using default: {default}")
    else:
        logger.info(f"Info: No {label} provided. Using default: {default}")
    return default


def process_config(args: argparse.Namespace) -> dict[str, Any]:
    """
    Process the command line arguments and environment variables to create a config dictionary.
    The result is used to build `gasnet_graph_api.settings.Settings`.

    Parameters
    ----------
    args : argparse.Namespace
        The command line arguments.

    Returns
    -------
    config : dict[str, Any]
        The configuration dictionary.
    """

    config: dict[str, Any] = dict()

    config["db_url"] = _setting(
        args.db_url, ("AGENSGRAPH_URL", "AGENSGRAPH_URI"), "postgresql://localhost:5432",
        "Agensgraph connection URL", warn=True,
    )
    config["username"] = _setting(
        args.username, ("AGENSGRAPH_USERNAME",), "postgres", "Agensgraph username", warn=True
    )
    config["password"] = _setting(
        args.password, ("AGENSGRAPH_PASSWORD",), "postgres", "Agensgraph password", warn=True
    )
    config["database"] = _setting(
        args.database, ("AGENSGRAPH_DATABASE",), "agens", "Agensgraph database", warn=True
    )
    config["graphname"] = _setting(
        args.graphname, ("AGENSGRAPH_GRAPHNAME",), "gasnet", "Agensgraph graphname", warn=True
    )

    # parse transport
    transport = _setting(args.transport, ("GASNET_TRANSPORT",), "rest", "transport type")
    if transport not in TRANSPORTS:
        raise ValueError(f"Invalid transport: {transport} | Must be one of {', '.join(TRANSPORTS)}")
    config["transport"] = transport

    if transport == "stdio" and (args.server_host or args.server_port or args.server_path):
        logger.warning(
            "Warning: Server host, port or path provided, but transport is `stdio`. They will be set, but ignored."
        )
    config["host"] = _setting(args.server_host, ("GASNET_SERVER_HOST",), "127.0.0.1", "server host")
    config["port"] = _setting(args.server_port, ("GASNET_SERVER_PORT",), 8080, "server port", cast=int)
    config["path"] = _setting(args.server_path, ("GASNET_MCP_SERVER_PATH",), "/mcp/", "MCP server path")

    # parse allow origins
    if args.allow_origins is not None:
        config["allow_origins"] = parse_csv(args.allow_origins)
    elif os.getenv("GASNET_ALLOW_ORIGINS") is not None:
        config["allow_origins"] = parse_csv(os.getenv("GASNET_ALLOW_ORIGINS"))
    else:
        logger.info("Info: No allow origins provided. Defaulting to no allowed origins.")
        config["allow_origins"] = list()

    # parse allowed hosts for DNS rebinding protection
    if args.allowed_hosts is not None:
        config["allowed_hosts"] = parse_csv(args.allowed_hosts)
    elif os.getenv("GASNET_ALLOWED_HOSTS") is not None:
        config["allowed_hosts"] = parse_csv(os.getenv("GASNET_ALLOWED_HOSTS"))
    else:
        logger.info(
            "Info: No allowed hosts provided. Defaulting to secure mode - only localhost and 127.0.0.1 allowed."
        )
        config["allowed_hosts"] = ["localhost", "127.0.0.1"]

    config["read_timeout"] = _setting(
        args.read_timeout, ("AGENSGRAPH_READ_TIMEOUT",), 30, "read timeout (seconds)", cast=int
    )

    # writes are on unless explicitly disabled
    config["enable_writes"] = _setting(
        args.enable_writes, ("GASNET_ENABLE_WRITES",), True, "write setting", cast=parse_boolean_safely
    )
    logger.info(f"Info: Write endpoints enabled: {config['enable_writes']}")

    config["auth_required"] = _setting(
        args.auth_required, ("GASNET_AUTH_REQUIRED",), False, "auth setting", cast=parse_boolean_safely
    )
    if args.api_keys is not None:
        config["api_keys"] = parse_csv(args.api_keys)
    else:
        config["api_keys"] = parse_csv(os.getenv("GASNET_API_KEYS"))
    if not config["api_keys"]:
        logger.warning("Warning: No API keys configured.")

    max_hops = _setting(args.max_hops, ("GASNET_MAX_HOPS",), 100, "max hops", cast=int)
    if not 1 <= max_hops <= 200:
        clamped = min(max(max_hops, 1), 200)
        logger.warning(f"Warning: max hops {max_hops} outside 1..200. Using {clamped}")
        max_hops = clamped
    config["max_hops"] = max_hops

    concurrency = _setting(
        args.enrich_concurrency, ("GASNET_ENRICH_CONCURRENCY",), 5, "enrichment concurrency", cast=int
    )
    if concurrency < 1:
        logger.warning(f"Warning: enrichment concurrency {concurrency} is below 1. Using 1")
        concurrency = 1
    config["enrich_concurrency"] = concurrency

    config["namespace"] = _setting(args.namespace, ("GASNET_NAMESPACE",), "", "namespace")
    config["token_limit"] = _setting(
        args.token_limit, ("GASNET_RESPONSE_TOKEN_LIMIT",), None, "token limit", cast=int
    )

    return config


def _value_sanitize(d: Any, list_limit: int = 128) -> Any:
    """
    Drop oversized lists from a result before it is handed to an agent.

    Lists with ``list_limit`` or more elements (embedding-like values, long
    series) are removed, along with the keys that held them.

    Parameters
    ----------
    d : Any
        The input dictionary or list to sanitize.
    list_limit : int
        The limit for the number of elements in a list.

    Returns
    -------
    Any
        The sanitized dictionary or list.
    """
    if isinstance(d, dict):
        new_dict = {}
        for key, value in d.items():
            if isinstance(value, (dict, list)):
                sanitized_value = _value_sanitize(value, list_limit)
                if sanitized_value is not None:
                    new_dict[key] = sanitized_value
            else:
                new_dict[key] = value
        return new_dict
    elif isinstance(d, list):
        if len(d) >= list_limit:
            return None
        sanitized = [_value_sanitize(item, list_limit) for item in d]
        return [item for item in sanitized if item is not None]
    else:
        return d


def _truncate_string_to_tokens(
    text: str, token_limit: int, model: str = "gpt-4"
) -> str:
    """
    Truncates the input string to fit within the specified token limit.

    Parameters
    ----------
    text : str
        The input text string.
    token_limit : int
        Maximum number of tokens allowed.
    model : str
        Model name (affects tokenization). Defaults to "gpt-4".

    Returns
    -------
    str
        The truncated string that fits within the token limit.
    """
    encoding = tiktoken.encoding_for_model(model)
    tokens = encoding.encode(text)
    if len(tokens) <= token_limit:
        return text
    return encoding.decode(tokens[:token_limit])


# identifier containing at least one uppercase letter
_MIXED_CASE = r"(?=[a-zA-Z0-9_]*[A-Z])[a-zA-Z_][a-zA-Z0-9_]*"


def _quote_identifiers(query: str) -> str:
    """
    Quote mixed-case labels and property keys so AgensGraph keeps their case.

    Unquoted identifiers fold to lower case, which would turn
    ``l.locationId`` into ``l.locationid``.

    Examples:
        MATCH (l:Location) -> MATCH (l:"Location")
        RETURN l.locationId -> RETURN l."locationId"
        MATCH (o {locQTI: 'RPQ'}) -> MATCH (o {"locQTI": 'RPQ'})
    """
    # :Label -> :"Label"
    query = re.sub(rf':(?!")({_MIXED_CASE})', r':"\1"', query)

    # {propName: -> {"propName":
    query = re.sub(rf'([{{,]\s*)({_MIXED_CASE})\s*:', r'\1"\2":', query)

    # .propName -> ."propName"
    query = re.sub(rf'\.(?!")({_MIXED_CASE})\b', r'."\1"', query)

    return query
