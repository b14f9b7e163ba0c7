"""
Transport boundary and its HTTP implementation.

A transport sends one request to one endpoint and either returns the decoded
reply or raises ``TransportError``. It holds no transaction or credential
state of its own: per-call credentials arrive in ``metadata``.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, List, Callable
from urllib.parse import urljoin

import requests

from .api import Jwt, LoginRequest, TxnContext, Request, Response, Operation
from .auth import APIKeyAuth, BearerTokenAuth
from .exceptions import AuthenticationError, StatusCode, TransportError
from .retry import TOKEN_EXPIRED_MARKER
from .session import ACCESS_JWT_KEY

logger = logging.getLogger(__name__)


class Transport(ABC):
    """Remote calls the client core depends on."""

    @abstractmethod
    def login(self, request: LoginRequest, metadata: Dict[str, str],
              timeout: Optional[float] = None) -> Jwt:
        ...

    @abstractmethod
    def query(self, request: Request, metadata: Dict[str, str],
              timeout: Optional[float] = None) -> Response:
        """
        Run a query, a mutation or an upsert.

        Raises:
            ValueError: If ``request.validate()`` rejects the request
        """
        ...

    @abstractmethod
    def commit_or_abort(self, context: TxnContext, metadata: Dict[str, str],
                        timeout: Optional[float] = None) -> TxnContext:
        ...

    @abstractmethod
    def alter(self, operation: Operation, metadata: Dict[str, str],
              timeout: Optional[float] = None) -> Dict[str, Any]:
        ...

    @abstractmethod
    def check_version(self, metadata: Dict[str, str],
                      timeout: Optional[float] = None) -> str:
        ...

    @abstractmethod
    def create_namespace(self, password: Optional[str], metadata: Dict[str, str],
                         timeout: Optional[float] = None) -> int:
        ...

    @abstractmethod
    def drop_namespace(self, ns_id: int, metadata: Dict[str, str],
                       timeout: Optional[float] = None) -> None:
        ...

    @abstractmethod
    def list_namespaces(self, metadata: Dict[str, str],
                        timeout: Optional[float] = None) -> List[int]:
        ...

    def close(self) -> None:
        pass


_ADD_NAMESPACE = """
mutation ($password: String) {
  addNamespace(input: {password: $password}) { namespaceId message }
}"""

_DELETE_NAMESPACE = """
mutation ($id: Int!) {
  deleteNamespace(input: {namespaceId: $id}) { namespaceId message }
}"""

_LIST_NAMESPACES = "query { state { namespaces } }"

_STATUS_CODES = {
    400: StatusCode.INVALID_ARGUMENT,
    401: StatusCode.UNAUTHENTICATED,
    403: StatusCode.PERMISSION_DENIED,
    404: StatusCode.NOT_FOUND,
    409: StatusCode.ABORTED,
    501: StatusCode.UNIMPLEMENTED,
    502: StatusCode.UNAVAILABLE,
    503: StatusCode.UNAVAILABLE,
    504: StatusCode.UNAVAILABLE,
}


def _error_from_body(errors: List[Dict[str, Any]], status_code: int) -> TransportError:
    """Classify a Dgraph ``errors`` array."""
    message = "; ".join(str(err.get("message", "")) for err in errors) or "unknown error"
    codes = {(err.get("extensions") or {}).get("code", "") for err in errors}

    if (status_code == 401 or "ErrorUnauthorized" in codes
            or TOKEN_EXPIRED_MARKER in message):
        code = StatusCode.UNAUTHENTICATED
    elif "ErrorAborted" in codes or "has been aborted" in message:
        code = StatusCode.ABORTED
    elif "ErrorInvalidRequest" in codes:
        code = StatusCode.INVALID_ARGUMENT
    else:
        code = _STATUS_CODES.get(status_code, StatusCode.UNKNOWN)
    return TransportError(message, code)


def _upsert_rdf(request: Request) -> str:
    """Render a request with RDF mutations as a Dgraph mutation block."""
    if not request.query:
        sets = [mu.set_nquads for mu in request.mutations if mu.set_nquads]
        dels = [mu.del_nquads for mu in request.mutations if mu.del_nquads]
        body = ""
        if sets:
            body += "set {\n%s\n}\n" % "\n".join(sets)
        if dels:
            body += "delete {\n%s\n}\n" % "\n".join(dels)
        return "{\n%s}" % body

    blocks = []
    for mu in request.mutations:
        body = ""
        if mu.set_nquads:
            body += "set {\n%s\n}\n" % mu.set_nquads
        if mu.del_nquads:
            body += "delete {\n%s\n}\n" % mu.del_nquads
        blocks.append((mu.cond, body))

    query = request.query.strip()
    if not query.startswith("query"):
        query = "query " + query
    out = "upsert {\n%s\n" % query
    for cond, body in blocks:
        head = "mutation %s {" % cond if cond else "mutation {"
        out += "%s\n%s}\n" % (head, body)
    return out + "}"


class HttpTransport(Transport):
    """
    Transport over a Dgraph alpha's HTTP API.

    Example:
        >>> transport = HttpTransport("http://localhost:8080")
        >>> transport.check_version({})
        'v24.0.0'
    """

    ACCESS_TOKEN_HEADER = "X-Dgraph-AccessToken"

    def __init__(
        self,
        base_url: str,
        timeout: float = 30,
        verify_ssl: bool = True,
        api_key: Optional[str] = None,
        bearer_token: Optional[str] = None,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the transport.

        Args:
            base_url: Alpha HTTP address, e.g. ``http://localhost:8080``
            timeout: Default request timeout in seconds
            verify_ssl: Verify TLS certificates
            api_key: Dgraph Cloud API key
            bearer_token: Token sent as ``Authorization: Bearer``
            session: Pre-configured HTTP session to reuse
        """
        self.base_url = base_url
        self.timeout = timeout
        self.verify_ssl = verify_ssl
        self.session = session or requests.Session()
        self._auth_handler = None

        if api_key:
            self._auth_handler = APIKeyAuth(api_key, self.session)
        elif bearer_token:
            self._auth_handler = BearerTokenAuth(bearer_token, self.session)

    def _headers(self, metadata: Dict[str, str]) -> Dict[str, str]:
        headers = {}
        for key, value in metadata.items():
            if key == ACCESS_JWT_KEY:
                headers[self.ACCESS_TOKEN_HEADER] = value
            else:
                headers[key] = value
        return headers

    def _send(self, send: Callable[..., requests.Response], path: str,
              timeout: Optional[float], **kwargs) -> Dict[str, Any]:
        url = urljoin(self.base_url, path)
        logger.debug("HTTP %s %s", path, kwargs.get("params") or "")
        try:
            response = send(
                url,
                timeout=timeout if timeout is not None else self.timeout,
                verify=self.verify_ssl,
                **kwargs
            )
        except requests.exceptions.Timeout as e:
            raise TransportError(f"Request to {url} timed out: {e}", StatusCode.DEADLINE_EXCEEDED)
        except requests.exceptions.ConnectionError as e:
            raise TransportError(f"Failed to connect to {url}: {e}", StatusCode.UNAVAILABLE)
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Request to {url} failed: {e}")

        try:
            body = response.json()
        except ValueError:
            body = None

        if isinstance(body, dict) and body.get("errors"):
            raise _error_from_body(body["errors"], response.status_code)
        if response.status_code >= 400:
            raise TransportError(
                f"HTTP {response.status_code} from {url}",
                _STATUS_CODES.get(response.status_code, StatusCode.UNKNOWN)
            )
        if body is None:
            raise TransportError(f"Invalid JSON in response from {url}", StatusCode.INTERNAL)
        return body

    def _post(self, path: str, metadata: Dict[str, str], timeout: Optional[float],
              **kwargs) -> Dict[str, Any]:
        headers = self._headers(metadata)
        headers.update(kwargs.pop("headers", {}))
        return self._send(self.session.post, path, timeout, headers=headers, **kwargs)

    def _admin(self, query: str, variables: Dict[str, Any], metadata: Dict[str, str],
               timeout: Optional[float]) -> Dict[str, Any]:
        result = self._post("/admin", metadata, timeout,
                            json={"query": query, "variables": variables})
        return result.get("data") or {}

    def login(self, request: LoginRequest, metadata: Dict[str, str],
              timeout: Optional[float] = None) -> Jwt:
        result = self._post("/login", metadata, timeout, json=request.to_dict())
        data = result.get("data") or {}
        access_jwt = data.get("accessJWT")
        if not access_jwt:
            raise AuthenticationError("Invalid login response: missing access token")
        return Jwt(access_jwt, data.get("refreshJWT", ""))

    def query(self, request: Request, metadata: Dict[str, str],
              timeout: Optional[float] = None) -> Response:
        request.validate()
        params: Dict[str, str] = {}
        if request.start_ts:
            params["startTs"] = str(request.start_ts)

        if request.mutations:
            if request.commit_now:
                params["commitNow"] = "true"
            if all(mu.is_json() for mu in request.mutations):
                body: Dict[str, Any] = {"mutations": [mu.to_dict() for mu in request.mutations]}
                if request.query:
                    body["query"] = request.query
                if request.variables:
                    body["variables"] = request.variables
                result = self._post("/mutate", metadata, timeout, params=params, json=body)
            else:
                result = self._post(
                    "/mutate", metadata, timeout, params=params,
                    headers={"Content-Type": "application/rdf"},
                    data=_upsert_rdf(request).encode("utf-8")
                )
        else:
            if request.read_only:
                params["ro"] = "true"
            if request.best_effort:
                params["be"] = "true"
            if request.hash:
                params["hash"] = request.hash
            if request.resp_format != "json":
                params["respFormat"] = request.resp_format
            body = {"query": request.query}
            if request.variables:
                body["variables"] = request.variables
            result = self._post("/query", metadata, timeout, params=params, json=body)

        extensions = result.get("extensions") or {}
        data = result.get("data")
        uids = {}
        if request.mutations and isinstance(data, dict):
            uids = data.get("uids") or {}
        return Response(
            data=data,
            txn=TxnContext.from_dict(extensions.get("txn")),
            uids=uids,
            latency=extensions.get("server_latency"),
            rdf=data if isinstance(data, str) else ""
        )

    def commit_or_abort(self, context: TxnContext, metadata: Dict[str, str],
                        timeout: Optional[float] = None) -> TxnContext:
        params = {"startTs": str(context.start_ts)}
        if context.aborted:
            params["abort"] = "true"
        result = self._post("/commit", metadata, timeout, params=params,
                            json={"keys": context.keys, "preds": context.preds})
        extensions = result.get("extensions") or {}
        reply = TxnContext.from_dict(extensions.get("txn"))
        return reply or TxnContext(start_ts=context.start_ts, aborted=context.aborted)

    def alter(self, operation: Operation, metadata: Dict[str, str],
              timeout: Optional[float] = None) -> Dict[str, Any]:
        params = {"runInBackground": "true"} if operation.run_in_background else {}
        if operation.schema:
            result = self._post("/alter", metadata, timeout, params=params,
                                data=operation.schema.encode("utf-8"))
        else:
            result = self._post("/alter", metadata, timeout, params=params,
                                json=operation.to_dict())
        return result.get("data") or {}

    def check_version(self, metadata: Dict[str, str],
                      timeout: Optional[float] = None) -> str:
        result = self._send(self.session.get, "/health", timeout,
                            headers=self._headers(metadata))
        if isinstance(result, list):
            result = result[0] if result else {}
        return result.get("version", "")

    def create_namespace(self, password: Optional[str], metadata: Dict[str, str],
                         timeout: Optional[float] = None) -> int:
        variables = {"password": password} if password else {}
        data = self._admin(_ADD_NAMESPACE, variables, metadata, timeout)
        return int(data["addNamespace"]["namespaceId"])

    def drop_namespace(self, ns_id: int, metadata: Dict[str, str],
                       timeout: Optional[float] = None) -> None:
        self._admin(_DELETE_NAMESPACE, {"id": ns_id}, metadata, timeout)

    def list_namespaces(self, metadata: Dict[str, str],
                        timeout: Optional[float] = None) -> List[int]:
        data = self._admin(_LIST_NAMESPACES, {}, metadata, timeout)
        return [int(ns) for ns in (data.get("state") or {}).get("namespaces") or []]

    def close(self) -> None:
        if self.session:
            self.session.close()

    def __repr__(self):
        return f"HttpTransport(base_url='{self.base_url}')"
