"""
roomcast.services.auth
~~~~~~~~~~~~~~~~~~~~~~

认证协作方契约。

账号注册、密码校验、JWT 签发 / 校验都不属于聊天核心；核心只要求一个
``Authenticator``：给定连接时携带的凭证，返回身份或抛出 ``AuthenticationRejected``。
``GuestAuthenticator`` 是开发环境用的最小实现。
"""
from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass

from roomcast.core.errors import AuthenticationRejected
from roomcast.services.session_registry import Identity

_USERNAME_RE = re.compile(r"[\w.\-]{1,32}")


@dataclass(frozen=True)
class AuthResult:
    identity: Identity
    is_guest: bool = False


class Authenticator(ABC):
    @abstractmethod
    async def verify(self, credential: str | None) -> AuthResult:
        """校验凭证。

        Raises:
            AuthenticationRejected: 凭证缺失或无效。
        """


class GuestAuthenticator(Authenticator):
    """接受 ``guest:<用户名>`` 形式的访客凭证。"""

    PREFIX = "guest:"

    def __init__(self, allow_guests: bool = True) -> None:
        self.allow_guests = allow_guests

    async def verify(self, credential: str | None) -> AuthResult:
        if not credential:
            raise AuthenticationRejected("missing credential")
        if not self.allow_guests or not credential.startswith(self.PREFIX):
            raise AuthenticationRejected()

        username = credential[len(self.PREFIX):].strip()
        if not _USERNAME_RE.fullmatch(username):
            raise AuthenticationRejected("invalid guest username")
        return AuthResult(identity=Identity(username=username), is_guest=True)
