"""CORS-bridging proxy URL strategies, tried in order."""
from typing import Callable, Tuple
from urllib.parse import quote

ProxyStrategy = Callable[[str], str]


def codetabs_proxy(url: str) -> str:
    return f"https://api.codetabs.com/v1/proxy?quest={quote(url, safe='')}"


def cors_anywhere_proxy(url: str) -> str:
    return f"https://cors-anywhere.herokuapp.com/{url}"


def thingproxy_proxy(url: str) -> str:
    return f"https://thingproxy.freeboard.io/fetch/{url}"


def cors_bridged_proxy(url: str) -> str:
    return f"https://cors.bridged.cc/{url}"


def allorigins_proxy(url: str) -> str:
    """JSON envelope proxy; the page HTML comes back in the ``contents`` field."""
    return f"https://api.allorigins.win/get?url={quote(url, safe='')}"


FEED_PROXIES: Tuple[ProxyStrategy, ...] = (
    codetabs_proxy,
    cors_anywhere_proxy,
    thingproxy_proxy,
    cors_bridged_proxy,
)
