"""
Invocation executor: turns an operation descriptor plus caller parameters into an
OData HTTP request and shapes the response.
"""

import asyncio
import json
import sys
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote, urlencode
import requests
from pydantic import BaseModel, ConfigDict

from .errors import ConfigurationError, ExecutionError, ExecutionErrorKind, ValidationError
from .keys import build_key_predicate, encode_literal, format_literal
from .models import Model, OperationDescriptor, OperationKind, Property
from .session import Auth, build_session

QUERY_OPTIONS = {
    'expand': '$expand',
    'filter': '$filter',
    'orderby': '$orderby',
    'search': '$search',
    'select': '$select',
    'skip': '$skip',
    'top': '$top',
}


def encode_query_params(params):
    """Encode query parameters properly for OData compatibility.

    OData servers (especially SAP CAP backends) don't accept '+' for spaces
    in URL parameters. They require '%20' according to RFC 3986.
    """
    encoded = urlencode(params, doseq=True, safe='$')
    return encoded.replace('+', '%20')


class PreparedCall:
    """Method, address and payload of one outbound request."""

    def __init__(self, method: str, url: str, query: Optional[List[Tuple[str, Any]]] = None,
                 body: Any = None):
        self.method = method
        self.url = url
        self.query = sorted(query or [], key=lambda item: item[0])
        self.body = body

    @property
    def full_url(self) -> str:
        if not self.query:
            return self.url
        return f"{self.url}?{encode_query_params(self.query)}"


class InvocationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    operation: str
    kind: OperationKind
    status_code: int
    data: Any = None

    def to_json(self) -> str:
        return json.dumps(self.data, indent=2, default=str)


def _segment(name: str) -> str:
    return quote(name, safe='')


class InvocationExecutor:
    """Executes catalog operations against an OData service."""

    def __init__(self, auth: Auth = None, verbose: bool = False, request_timeout: Optional[float] = 60,
                 response_metadata: bool = False):
        self.auth = auth
        self.verbose = verbose
        self.request_timeout = request_timeout
        self.response_metadata = response_metadata

    def _log_verbose(self, message: str):
        """Prints message to stderr only if verbose mode is enabled."""
        if self.verbose:
            timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]
            print(f"[{timestamp} Executor VERBOSE] {message}", file=sys.stderr)

    def _new_session(self, model: Model) -> requests.Session:
        session = build_session(self.auth)
        session.headers['Content-Type'] = 'application/json'
        if model.is_v4:
            session.headers.update({'OData-Version': '4.0', 'OData-MaxVersion': '4.0'})
        else:
            session.headers.update({'DataServiceVersion': model.version, 'MaxDataServiceVersion': model.version})
        return session

    async def execute(self, descriptor: OperationDescriptor, parameters: Optional[Dict[str, Any]],
                      service_base_address: Optional[str], model: Model,
                      cancel_event: Optional[asyncio.Event] = None,
                      timeout: Optional[float] = None) -> InvocationResult:
        """Run one operation. Raises ConfigurationError, ValidationError or ExecutionError."""
        if not service_base_address or not service_base_address.strip():
            raise ConfigurationError("No service base address configured; cannot execute operations")
        base = service_base_address.strip().rstrip('/')
        params = self._validate(descriptor, dict(parameters or {}))
        call = self._prepare(descriptor, params, base, model)

        session = self._new_session(model)
        try:
            response = await self._dispatch(session, call, descriptor, cancel_event, timeout)
            self._raise_for_status(response, descriptor)
            data = await self._shape(descriptor, params, call, response, base, model, session,
                                     cancel_event, timeout)
            return InvocationResult(
                operation=descriptor.name,
                kind=descriptor.kind,
                status_code=response.status_code,
                data=data,
            )
        finally:
            session.close()

    # --- Validation ---

    def _validate(self, descriptor: OperationDescriptor, params: Dict[str, Any]) -> Dict[str, Any]:
        missing = [name for name in descriptor.required_parameters if params.get(name) is None]
        if missing:
            raise ValidationError(f"Missing required parameter(s): {', '.join(missing)}", parameter=missing[0])

        if descriptor.input_schema.get('additionalProperties') is False:
            known = set(descriptor.parameter_names)
            unknown = sorted(name for name in params if name not in known)
            if unknown:
                raise ValidationError(f"Unknown parameter(s) for {descriptor.name}: {', '.join(unknown)}",
                                      parameter=unknown[0])

        if descriptor.kind in (OperationKind.LIST, OperationKind.SEARCH, OperationKind.NAVIGATE_GET):
            for name in ('top', 'skip'):
                if params.get(name) is None:
                    continue
                value = params[name]
                try:
                    if isinstance(value, bool):
                        raise ValueError
                    params[name] = int(value)
                except (ValueError, TypeError):
                    raise ValidationError(f"'{name}' must be an integer", parameter=name) from None
            top = params.get('top')
            if top is not None and (top < 1 or (descriptor.max_page_size and top > descriptor.max_page_size)):
                upper = descriptor.max_page_size or 'unbounded'
                raise ValidationError(f"'top' must be between 1 and {upper}", parameter='top')
            if params.get('skip') is not None and params['skip'] < 0:
                raise ValidationError("'skip' must not be negative", parameter='skip')
            if params.get('count') is not None:
                count = params['count']
                if isinstance(count, str):
                    count = count.strip().lower() == 'true'
                params['count'] = bool(count)
        return params

    # --- Request construction ---

    def _entity_type_keys(self, model: Model, type_name: Optional[str]) -> List[Property]:
        entity_type = model.get_entity_type(type_name)
        if entity_type is None:
            raise ConfigurationError(f"Entity type '{type_name}' is not part of the current model")
        return model.key_properties_of(entity_type)

    def _entity_url(self, descriptor: OperationDescriptor, params: Dict[str, Any], base: str, model: Model) -> str:
        key_properties = self._entity_type_keys(model, descriptor.entity_type)
        try:
            predicate = build_key_predicate(key_properties, params, model.version)
        except ValueError as e:
            raise ValidationError(f"Invalid key value for {descriptor.entity_set}: {e}") from e
        return f"{base}/{_segment(descriptor.entity_set)}{predicate}"

    def _related_predicate(self, descriptor: OperationDescriptor, params: Dict[str, Any], model: Model) -> str:
        key_properties = self._entity_type_keys(model, descriptor.related_entity_type)
        related = params['relatedEntityKey']
        if isinstance(related, dict):
            values = related
        elif len(key_properties) == 1:
            values = {key_properties[0].name: related}
        else:
            raise ValidationError("'relatedEntityKey' must be an object for composite keys",
                                  parameter='relatedEntityKey')
        missing = [p.name for p in key_properties if values.get(p.name) is None]
        if missing:
            raise ValidationError(f"'relatedEntityKey' is missing: {', '.join(missing)}",
                                  parameter='relatedEntityKey')
        try:
            return build_key_predicate(key_properties, values, model.version)
        except ValueError as e:
            raise ValidationError(f"Invalid related key: {e}", parameter='relatedEntityKey') from e

    def _related_url(self, descriptor: OperationDescriptor, params: Dict[str, Any], base: str, model: Model) -> str:
        return f"{base}/{_segment(descriptor.related_entity_set)}{self._related_predicate(descriptor, params, model)}"

    def _query(self, descriptor: OperationDescriptor, params: Dict[str, Any], model: Model,
               default_top: bool = True) -> List[Tuple[str, Any]]:
        options = {}
        for name, option in QUERY_OPTIONS.items():
            if params.get(name) is not None:
                options[option] = params[name]
        if '$select' not in options and descriptor.default_select:
            options['$select'] = ','.join(descriptor.default_select)
        if params.get('count'):
            if model.is_v4:
                options['$count'] = 'true'
            else:
                options['$inlinecount'] = 'allpages'
        if default_top and '$top' not in options and descriptor.default_page_size:
            options['$top'] = descriptor.default_page_size
        return list(options.items())

    def _body(self, descriptor: OperationDescriptor, params: Dict[str, Any]) -> Dict[str, Any]:
        keys = set(descriptor.key_properties) if descriptor.kind == OperationKind.UPDATE else set()
        return {name: value for name, value in params.items() if name not in keys}

    def _import_parameters(self, descriptor: OperationDescriptor, model: Model) -> Dict[str, Property]:
        function = model.get_function(descriptor.operation)
        if function is not None:
            return {p.name: p for p in function.parameters}
        for container in model.containers.values():
            function_import = container.function_imports.get(descriptor.entity_set)
            if function_import is not None:
                return {p.name: p for p in function_import.parameters}
        return {}

    def _format_parameter(self, prop: Optional[Property], name: str, value: Any, model: Model) -> str:
        try:
            return format_literal(value, prop.type if prop else None, model.version)
        except ValueError as e:
            raise ValidationError(f"Invalid value for parameter '{name}': {e}", parameter=name) from e

    def _prepare(self, descriptor: OperationDescriptor, params: Dict[str, Any], base: str, model: Model) -> PreparedCall:
        set_url = f"{base}/{_segment(descriptor.entity_set or '')}"

        match descriptor.kind:
            case OperationKind.CREATE:
                return PreparedCall('POST', set_url, body=self._body(descriptor, params))

            case OperationKind.READ:
                if descriptor.is_singleton:
                    return PreparedCall('GET', set_url)
                return PreparedCall('GET', self._entity_url(descriptor, params, base, model))

            case OperationKind.UPDATE:
                method = 'PATCH' if model.is_v4 else 'MERGE'
                return PreparedCall(method, self._entity_url(descriptor, params, base, model),
                                    body=self._body(descriptor, params))

            case OperationKind.DELETE:
                return PreparedCall('DELETE', self._entity_url(descriptor, params, base, model))

            case OperationKind.LIST | OperationKind.SEARCH:
                return PreparedCall('GET', set_url, query=self._query(descriptor, params, model))

            case OperationKind.COUNT:
                count_option = ('$count', 'true') if model.is_v4 else ('$inlinecount', 'allpages')
                query = [count_option, ('$top', 0)]
                if params.get('filter') is not None:
                    query.append(('$filter', params['filter']))
                return PreparedCall('GET', set_url, query=query)

            case OperationKind.NAVIGATE_GET:
                url = f"{self._entity_url(descriptor, params, base, model)}/{_segment(descriptor.navigation_property)}"
                query = self._query(descriptor, params, model) if descriptor.navigation_is_collection else []
                return PreparedCall('GET', url, query=query)

            case OperationKind.NAVIGATE_ADD:
                entity_url = self._entity_url(descriptor, params, base, model)
                related_url = self._related_url(descriptor, params, base, model)
                method = 'POST' if descriptor.navigation_is_collection else 'PUT'
                nav = _segment(descriptor.navigation_property)
                if model.is_v4:
                    return PreparedCall(method, f"{entity_url}/{nav}/$ref", body={'@odata.id': related_url})
                return PreparedCall(method, f"{entity_url}/$links/{nav}", body={'uri': related_url})

            case OperationKind.NAVIGATE_REMOVE:
                entity_url = self._entity_url(descriptor, params, base, model)
                nav = _segment(descriptor.navigation_property)
                if not descriptor.navigation_is_collection:
                    url = f"{entity_url}/{nav}/$ref" if model.is_v4 else f"{entity_url}/$links/{nav}"
                    return PreparedCall('DELETE', url)
                if model.is_v4:
                    related_url = self._related_url(descriptor, params, base, model)
                    return PreparedCall('DELETE', f"{entity_url}/{nav}/$ref", query=[('$id', related_url)])
                predicate = self._related_predicate(descriptor, params, model)
                return PreparedCall('DELETE', f"{entity_url}/$links/{nav}{predicate}")

            case OperationKind.INVOKE:
                if descriptor.is_action:
                    return PreparedCall('POST', set_url, body=dict(params))
                parameters = self._import_parameters(descriptor, model)
                if model.is_v4:
                    inline = ','.join(
                        f"{name}={encode_literal(self._format_parameter(parameters.get(name), name, value, model))}"
                        for name, value in params.items() if value is not None
                    )
                    return PreparedCall('GET', f"{set_url}({inline})")
                query = [
                    (name, self._format_parameter(parameters.get(name), name, value, model))
                    for name, value in params.items() if value is not None
                ]
                return PreparedCall(descriptor.http_method or 'GET', set_url, query=query)

        raise ConfigurationError(f"Unsupported operation kind: {descriptor.kind}")

    # --- Dispatch ---

    def _send(self, session: requests.Session, call: PreparedCall) -> requests.Response:
        kwargs = {'timeout': self.request_timeout}
        if call.body is not None:
            kwargs['json'] = call.body
        return session.request(call.method, call.full_url, **kwargs)

    async def _dispatch(self, session: requests.Session, call: PreparedCall, descriptor: OperationDescriptor,
                        cancel_event: Optional[asyncio.Event], timeout: Optional[float]) -> requests.Response:
        if cancel_event is not None and cancel_event.is_set():
            raise ExecutionError(f"{descriptor.name} was cancelled before it started",
                                 kind=ExecutionErrorKind.CANCELLED)

        self._log_verbose(f"Requesting: {call.method} {call.full_url}"
                          + (f" with data {call.body}" if call.body is not None else ""))
        request_task = asyncio.ensure_future(asyncio.to_thread(self._send, session, call))
        cancel_task = asyncio.ensure_future(cancel_event.wait()) if cancel_event is not None else None
        waiters = {request_task} if cancel_task is None else {request_task, cancel_task}

        try:
            done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            # Closing the session tears down the in-flight connection
            session.close()
            request_task.cancel()
            raise
        finally:
            if cancel_task is not None:
                cancel_task.cancel()

        if request_task not in done:
            session.close()
            request_task.cancel()
            reason = "was cancelled" if cancel_task is not None and cancel_task in done else f"timed out after {timeout}s"
            print(f"ERROR: {descriptor.name} {reason}", file=sys.stderr)
            raise ExecutionError(f"{descriptor.name} {reason}", kind=ExecutionErrorKind.CANCELLED)

        try:
            return request_task.result()
        except requests.exceptions.RequestException as e:
            print(f"ERROR: Request for {descriptor.name} failed: {e}", file=sys.stderr)
            raise ExecutionError(f"OData request failed (N/A): {e}", kind=ExecutionErrorKind.NETWORK) from e

    # --- Responses ---

    def _parse_odata_error(self, response: requests.Response) -> str:
        """Attempt to extract a meaningful error message from an OData error response."""
        try:
            data = response.json()
        except ValueError:
            text = response.text.strip() if response.text else ""
            return text[:500] if text else f"HTTP {response.status_code}: {response.reason}"

        if isinstance(data, dict) and isinstance(data.get('error'), dict):
            error_obj = data['error']
            message = error_obj.get('message')
            if isinstance(message, dict) and 'value' in message:
                message = message['value']
            if isinstance(message, str) and message:
                code = error_obj.get('code')
                return f"{code}: {message}" if code else message
            inner = error_obj.get('innererror')
            if isinstance(inner, dict):
                details = inner.get('errordetails')
                if isinstance(details, list):
                    messages = [str(d.get('message')) for d in details if isinstance(d, dict) and d.get('message')]
                    if messages:
                        return "; ".join(messages)
                if inner.get('message'):
                    return str(inner['message'])
            return json.dumps(error_obj)
        if isinstance(data, dict) and data.get('Message'):
            return str(data['Message'])
        return json.dumps(data)[:1000]

    def _error_body(self, response: requests.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return response.text[:1000] if response.text else None

    def _raise_for_status(self, response: requests.Response, descriptor: OperationDescriptor):
        if 200 <= response.status_code < 300:
            return
        error_message = self._parse_odata_error(response)
        print(f"ERROR: OData HTTP Error: {response.status_code} {response.reason}. Message: {error_message}",
              file=sys.stderr)
        raise ExecutionError(
            f"OData request failed ({response.status_code}): {error_message}",
            kind=ExecutionErrorKind.HTTP,
            status_code=response.status_code,
            error_body=self._error_body(response),
        )

    def _parse_body(self, response: requests.Response) -> Any:
        if not response.content or not response.content.strip():
            return None
        try:
            return response.json()
        except ValueError as e:
            print(f"ERROR: Malformed response body (Status: {response.status_code}).", file=sys.stderr)
            raise ExecutionError(
                f"Malformed upstream response: {e}",
                kind=ExecutionErrorKind.MALFORMED_RESPONSE,
                status_code=response.status_code,
                error_body=response.text[:500],
            ) from e

    def _strip_annotations(self, data: Any) -> Any:
        if self.response_metadata:
            return data
        if isinstance(data, list):
            return [self._strip_annotations(item) for item in data]
        if isinstance(data, dict):
            result = {}
            for key, value in data.items():
                if key == '__metadata' or key.startswith('@odata.') or '@odata.' in key:
                    continue
                if isinstance(value, dict) and set(value.keys()) == {'__deferred'}:
                    continue
                result[key] = self._strip_annotations(value)
            return result
        return data

    def _shape_payload(self, data: Any) -> Any:
        """Unwrap v2 'd'/'results' and v4 'value' envelopes."""
        if isinstance(data, dict) and 'd' in data and len(data) == 1:
            data = data['d']
        if isinstance(data, dict) and isinstance(data.get('results'), list):
            shaped = {"results": self._strip_annotations(data['results'])}
            if '__count' in data:
                shaped["count"] = int(data['__count'])
            if data.get('__next'):
                shaped["next_link"] = data['__next']
            return shaped
        if isinstance(data, dict) and 'value' in data and all(
                k == 'value' or k.startswith('@') or k.startswith('odata.') for k in data):
            value = data['value']
            if not isinstance(value, list):
                return value
            shaped = {"results": self._strip_annotations(value)}
            if '@odata.count' in data:
                shaped["count"] = int(data['@odata.count'])
            if data.get('@odata.nextLink'):
                shaped["next_link"] = data['@odata.nextLink']
            return shaped
        return self._strip_annotations(data)

    def _extract_count(self, data: Any, descriptor: OperationDescriptor) -> int:
        if isinstance(data, dict) and 'd' in data and isinstance(data['d'], dict):
            data = data['d']
        if isinstance(data, dict):
            for field in ('@odata.count', 'odata.count', '__count'):
                if field in data:
                    try:
                        return int(data[field])
                    except (TypeError, ValueError):
                        break
        raise ExecutionError(f"Service did not return a count for {descriptor.entity_set}",
                             kind=ExecutionErrorKind.MALFORMED_RESPONSE)

    async def _follow_up_read(self, session: requests.Session, url: str, descriptor: OperationDescriptor,
                              cancel_event: Optional[asyncio.Event], timeout: Optional[float]) -> Any:
        self._log_verbose(f"No content returned for {descriptor.name}; reading {url}")
        response = await self._dispatch(session, PreparedCall('GET', url), descriptor, cancel_event, timeout)
        self._raise_for_status(response, descriptor)
        return self._shape_payload(self._parse_body(response))

    async def _shape(self, descriptor: OperationDescriptor, params: Dict[str, Any], call: PreparedCall,
                     response: requests.Response, base: str, model: Model, session: requests.Session,
                     cancel_event: Optional[asyncio.Event], timeout: Optional[float]) -> Any:
        data = self._parse_body(response)
        location = response.headers.get('OData-EntityId') or response.headers.get('Location')

        match descriptor.kind:
            case OperationKind.COUNT:
                return {"count": self._extract_count(data, descriptor)}

            case OperationKind.DELETE:
                keys = {k: params[k] for k in descriptor.key_properties if k in params}
                return {"message": f"Successfully deleted entity from {descriptor.entity_set} with key {keys}.",
                        "deleted": True}

            case OperationKind.NAVIGATE_ADD | OperationKind.NAVIGATE_REMOVE:
                action = "added to" if descriptor.kind == OperationKind.NAVIGATE_ADD else "removed from"
                return {"message": f"Relationship {action} {descriptor.entity_set}/{descriptor.navigation_property}.",
                        "success": True}

            case OperationKind.CREATE | OperationKind.UPDATE if data is None:
                if location:
                    read_url = location
                elif descriptor.kind == OperationKind.UPDATE:
                    read_url = call.url
                else:
                    return {"message": f"Entity created in {descriptor.entity_set} (no content returned)."}
                try:
                    return await self._follow_up_read(session, read_url, descriptor, cancel_event, timeout)
                except ExecutionError as e:
                    if e.cancelled:
                        raise
                    print(f"ERROR: Follow-up read for {descriptor.name} failed: {e}", file=sys.stderr)
                    return {"message": f"{descriptor.name} succeeded but the resulting entity could not be read.",
                            "follow_up_error": e.to_dict()}

        if data is None:
            return {"message": "Operation successful (No content returned)."}
        return self._shape_payload(data)
