"""
HTTP session construction shared by the metadata fetcher and the executor.
"""

from typing import Dict, Optional, Tuple, Union
import requests

from .constants import USER_AGENT

Auth = Optional[Union[Tuple[str, str], Dict[str, str]]]


def build_session(auth: Auth = None, accept: str = 'application/json') -> requests.Session:
    """Create a requests session with basic or cookie authentication applied."""
    session = requests.Session()
    if auth:
        if isinstance(auth, tuple) and len(auth) == 2:
            session.auth = auth
        elif isinstance(auth, dict):
            session.cookies.update(auth)
        else:
            raise ValueError("Auth must be either (username, password) tuple or cookies dict")
    session.headers.update({
        'Accept': accept,
        'User-Agent': USER_AGENT,
    })
    return session


def describe_auth(auth: Auth) -> str:
    if isinstance(auth, tuple):
        return "basic"
    if isinstance(auth, dict):
        return "cookie"
    return "none"
