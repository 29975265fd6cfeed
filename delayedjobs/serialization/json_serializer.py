# delayedjobs/serialization/json_serializer.py
import json

from delayedjobs.common.exceptions import JobLoadError
from delayedjobs.serialization.base import BaseSerializer, InvocationData


class JsonSerializer(BaseSerializer):
    def serialize_invocation(self, data: InvocationData) -> str:
        return json.dumps(
            {
                "type": data.type,
                "method": data.method,
                "args": list(data.args),
                "kwargs": dict(data.kwargs),
            }
        )

    def deserialize_invocation(self, payload: str) -> InvocationData:
        try:
            raw = json.loads(payload)
        except (TypeError, json.JSONDecodeError) as e:
            raise JobLoadError("Invocation data is not valid JSON") from e

        if not isinstance(raw, dict):
            raise JobLoadError("Invocation data must be a JSON object")

        type_name = raw.get("type")
        method = raw.get("method")
        args = raw.get("args", [])
        kwargs = raw.get("kwargs", {})
        if not isinstance(type_name, str) or not isinstance(method, str):
            raise JobLoadError("Invocation data is missing 'type' or 'method'")
        if not isinstance(args, list) or not isinstance(kwargs, dict):
            raise JobLoadError("Invocation arguments have the wrong shape")

        return InvocationData(type=type_name, method=method, args=args, kwargs=kwargs)
