"""Open-redirect protection.

``RedirectValidator`` decides whether a client-supplied redirect target is a
safe internal path, a safe external URL on an allowed domain, or unsafe.
Rejections never raise: malformed input resolves to the same result shape as
a policy failure.

``RedirectParamMiddleware`` is pure ASGI and sanitizes ``redirect`` /
``returnTo`` query parameters before route handlers see them.

Known limitations:
- The suspicious-pattern scan is a denylist of known-dangerous schemes and
  encodings. Novel encodings are not covered.
- Subdomains of an allowed domain are implicitly trusted.
- Lookalike (IDN/homograph) hostnames are only rejected because they fail
  the plain string match against the allow-list.
"""

from __future__ import annotations

import re
import threading
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from urllib.parse import quote, unquote_plus, urlsplit

from fastapi.responses import RedirectResponse
from starlette.datastructures import Headers
from starlette.types import ASGIApp, Receive, Scope, Send

from core.config import Settings
from core.logger import get_logger

logger = get_logger(__name__)

DEFAULT_FALLBACK_PATH = "/dashboard"

_SUSPICIOUS_PATTERNS: tuple[re.Pattern[str], ...] = (
    # Dangerous schemes
    re.compile(r"^javascript:", re.IGNORECASE),
    re.compile(r"^data:", re.IGNORECASE),
    re.compile(r"^vbscript:", re.IGNORECASE),
    re.compile(r"^file:", re.IGNORECASE),
    # Percent-encoded "javascript" / "data"
    re.compile(r"%6a%61%76%61%73%63%72%69%70%74", re.IGNORECASE),
    re.compile(r"%64%61%74%61", re.IGNORECASE),
    # HTML entity "j" / "a"
    re.compile(r"&#[xX]0*6[aA];", re.IGNORECASE),
    re.compile(r"&#[xX]0*61;", re.IGNORECASE),
    # Unicode-escaped "j" / "a"
    re.compile(r"\\u006a", re.IGNORECASE),
    re.compile(r"\\u0061", re.IGNORECASE),
    # Whitespace smuggled inside the scheme
    re.compile(r"java\s*script:", re.IGNORECASE),
    re.compile(r"data\s*:", re.IGNORECASE),
    re.compile(r"\x00"),
    re.compile(r"/{3,}"),
    re.compile(r"\\"),
)

_CONTROL_CHARS = re.compile(r"[\x00\r\n\t]")


class RedirectRejection(str, Enum):
    """Stable machine-readable rejection codes."""

    URL_REQUIRED = "URL_REQUIRED"
    SUSPICIOUS_PATTERN = "SUSPICIOUS_PATTERN"
    PROTOCOL_RELATIVE = "PROTOCOL_RELATIVE"
    PATH_NOT_ALLOWED = "PATH_NOT_ALLOWED"
    INSECURE_SCHEME = "INSECURE_SCHEME"
    DOMAIN_NOT_ALLOWED = "DOMAIN_NOT_ALLOWED"
    PARSE_ERROR = "PARSE_ERROR"
    INVALID_FORMAT = "INVALID_FORMAT"


@dataclass(frozen=True)
class RedirectValidationResult:
    """Outcome of validating a redirect target.

    ``sanitized_url`` is set only when ``valid`` is True; ``reason`` and
    ``code`` only when it is False.
    """

    valid: bool
    sanitized_url: str | None = None
    reason: str | None = None
    code: RedirectRejection | None = None

    @classmethod
    def accept(cls, sanitized_url: str) -> RedirectValidationResult:
        return cls(valid=True, sanitized_url=sanitized_url)

    @classmethod
    def reject(cls, code: RedirectRejection, reason: str) -> RedirectValidationResult:
        return cls(valid=False, reason=reason, code=code)


def has_suspicious_patterns(url: str) -> bool:
    return any(pattern.search(url) for pattern in _SUSPICIOUS_PATTERNS)


def sanitize_url(url: str) -> str:
    """Remove NUL, CR, LF and TAB characters, then trim."""
    return _CONTROL_CHARS.sub("", url).strip()


class RedirectValidator:
    """Validates redirect targets against instance-owned allow-lists.

    Args:
        allowed_domains: External hostnames a redirect may point at. A
            hostname matches when it equals an entry or ends with
            ``"." + entry``.
        allowed_paths: Internal path prefixes. A path matches when it
            equals an entry or starts with ``entry + "/"``.
        allow_http: Accept ``http://`` external URLs (non-production only).
        fallback_path: Safe internal destination used by ``safe_redirect``
            and ``resolve`` when validation fails.
    """

    def __init__(
        self,
        allowed_domains: Iterable[str],
        allowed_paths: Iterable[str],
        *,
        allow_http: bool = False,
        fallback_path: str = DEFAULT_FALLBACK_PATH,
    ) -> None:
        # Stored as tuples and swapped wholesale on append, so readers
        # always see a complete snapshot.
        self._domains: tuple[str, ...] = ()
        self._paths: tuple[str, ...] = tuple(dict.fromkeys(allowed_paths))
        self._lock = threading.Lock()
        self.allow_http = allow_http
        self.fallback_path = fallback_path
        for domain in allowed_domains:
            self.add_allowed_redirect_domain(domain)

    @classmethod
    def from_settings(cls, settings: Settings) -> RedirectValidator:
        return cls(
            settings.redirect_domains,
            settings.redirect_paths,
            allow_http=settings.debug,
            fallback_path=settings.redirect_fallback_path,
        )

    def add_allowed_redirect_domain(self, domain: str) -> None:
        """Add an external domain to the allow-list. Duplicates are a no-op."""
        if not isinstance(domain, str) or not domain.strip():
            raise ValueError("Domain must be a non-empty string")

        normalized = domain.strip().lower()
        with self._lock:
            if normalized in self._domains:
                return
            self._domains = (*self._domains, normalized)
        logger.info("redirect.domain_added", domain=normalized)

    def get_allowed_redirect_domains(self) -> list[str]:
        return list(self._domains)

    def get_allowed_redirect_paths(self) -> list[str]:
        return list(self._paths)

    def is_valid_redirect_url(self, url: object) -> RedirectValidationResult:
        if not url or not isinstance(url, str):
            return RedirectValidationResult.reject(
                RedirectRejection.URL_REQUIRED, "URL is required"
            )

        trimmed = url.strip()

        if has_suspicious_patterns(trimmed):
            return RedirectValidationResult.reject(
                RedirectRejection.SUSPICIOUS_PATTERN,
                "URL contains suspicious patterns",
            )

        if trimmed.startswith("//"):
            return RedirectValidationResult.reject(
                RedirectRejection.PROTOCOL_RELATIVE,
                "Protocol-relative URLs are not allowed",
            )

        if trimmed.startswith("/"):
            return self._validate_relative(trimmed)

        if trimmed.startswith(("http://", "https://")):
            return self._validate_absolute(trimmed)

        return RedirectValidationResult.reject(
            RedirectRejection.INVALID_FORMAT, "Invalid URL format"
        )

    def _validate_relative(self, url: str) -> RedirectValidationResult:
        # Only the path is matched; query and fragment ride along.
        path_only = url.split("?", 1)[0].split("#", 1)[0]

        is_allowed = any(
            path_only == allowed or path_only.startswith(allowed + "/")
            for allowed in self._paths
        )
        if not is_allowed:
            return RedirectValidationResult.reject(
                RedirectRejection.PATH_NOT_ALLOWED,
                f"Path '{path_only}' is not in allowed redirect paths",
            )

        return RedirectValidationResult.accept(sanitize_url(url))

    def _validate_absolute(self, url: str) -> RedirectValidationResult:
        try:
            parsed = urlsplit(url)
            hostname = parsed.hostname
        except ValueError:
            return RedirectValidationResult.reject(
                RedirectRejection.PARSE_ERROR, "Failed to parse absolute URL"
            )
        if not hostname:
            return RedirectValidationResult.reject(
                RedirectRejection.PARSE_ERROR, "Failed to parse absolute URL"
            )

        scheme = parsed.scheme.lower()
        if scheme != "https" and not (self.allow_http and scheme == "http"):
            return RedirectValidationResult.reject(
                RedirectRejection.INSECURE_SCHEME, "Only HTTPS protocol is allowed"
            )

        hostname = hostname.lower()
        is_allowed = any(
            hostname == domain or hostname.endswith("." + domain)
            for domain in self._domains
        )
        if not is_allowed:
            return RedirectValidationResult.reject(
                RedirectRejection.DOMAIN_NOT_ALLOWED,
                f"Domain '{hostname}' is not in allowed redirect domains",
            )

        return RedirectValidationResult.accept(sanitize_url(url))

    def resolve(self, url: str | None) -> str:
        """Return the sanitized target, or the fallback path when unsafe."""
        if not url:
            return self.fallback_path
        result = self.is_valid_redirect_url(url)
        if not result.valid:
            logger.warning(
                "redirect.blocked",
                reason=result.reason,
                code=result.code.value if result.code else None,
            )
            return self.fallback_path
        return result.sanitized_url or self.fallback_path

    def safe_redirect(self, url: str | None, status_code: int = 302) -> RedirectResponse:
        """Redirect to *url* if it validates, otherwise to the fallback path.

        The rejected target is logged but never echoed back to the client.
        """
        return RedirectResponse(url=self.resolve(url), status_code=status_code)


class RedirectParamMiddleware:
    """Sanitize redirect query parameters before routing.

    A parameter that fails validation is dropped from the query string; one
    that passes is replaced with its sanitized form.

    Args:
        app: The next ASGI application in the middleware stack.
        validator: The validator holding the allow-lists.
        param_names: Query parameter names carrying redirect targets.
    """

    def __init__(
        self,
        app: ASGIApp,
        validator: RedirectValidator,
        param_names: Iterable[str] = ("redirect", "returnTo"),
    ) -> None:
        self.app = app
        self.validator = validator
        self.param_names = frozenset(param_names)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not scope.get("query_string"):
            await self.app(scope, receive, send)
            return

        segments = scope["query_string"].split(b"&")
        if not any(self._param_name(segment) in self.param_names for segment in segments):
            await self.app(scope, receive, send)
            return

        # Only redirect pairs are rewritten; every other segment is kept byte-for-byte.
        cleaned: list[bytes] = []
        for segment in segments:
            name = self._param_name(segment)
            raw_name, _, raw_value = segment.partition(b"=")
            if name not in self.param_names or not raw_value:
                cleaned.append(segment)
                continue

            result = self.validator.is_valid_redirect_url(
                unquote_plus(raw_value.decode("latin-1"))
            )
            if result.valid and result.sanitized_url:
                cleaned.append(
                    raw_name + b"=" + quote(result.sanitized_url, safe="/").encode("ascii")
                )
                continue

            headers = Headers(scope=scope)
            client = scope.get("client")
            logger.warning(
                "redirect.param_rejected",
                param=name,
                reason=result.reason,
                ip=client[0] if client else None,
                user_agent=headers.get("user-agent"),
            )

        scope = dict(scope)
        scope["query_string"] = b"&".join(cleaned)
        await self.app(scope, receive, send)

    @staticmethod
    def _param_name(segment: bytes) -> str:
        return unquote_plus(segment.partition(b"=")[0].decode("latin-1"))
