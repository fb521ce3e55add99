from typing import Any, Protocol
import pickle
import json
import yaml


class Serializer(Protocol):
    """Serialize/deserialize Python values for backends that store bytes.

    Implementations should be symmetric: `dump` -> bytes, `load` <- bytes.
    `extension` is the file suffix a file backend uses for this format.
    """

    extension: str

    def dump(self, value: Any) -> bytes: ...

    def load(self, data: bytes) -> Any: ...


class PickleSerializer:
    """Default serializer using pickle (binary).

    Used for object-store snapshots, which hold arbitrary structured-clone
    values (dates, bytes, tuples) that JSON cannot represent.
    """

    extension = '.pkl'

    def dump(self, value: Any) -> bytes:
        return pickle.dumps(value, protocol=pickle.HIGHEST_PROTOCOL)

    def load(self, data: bytes) -> Any:
        return pickle.loads(data)


class JSONSerializer:
    """Compact JSON for plain dicts and lists."""

    extension = '.json'

    def dump(self, value: Any) -> bytes:
        return json.dumps(value).encode("utf-8")

    def load(self, data: bytes) -> Any:
        return json.loads(data.decode("utf-8"))


class YAMLSerializer:
    """Serializer using YAML (text). Caller must ensure values are YAML-serializable."""

    extension = '.yml'

    def dump(self, value: Any) -> bytes:
        return yaml.safe_dump(value).encode("utf-8")

    def load(self, data: bytes) -> Any:
        return yaml.safe_load(data.decode("utf-8"))


class TextSerializer:
    """Stores plain strings as UTF-8 text; web storage areas only hold strings."""

    extension = '.txt'

    def dump(self, value: Any) -> bytes:
        if not isinstance(value, str):
            raise TypeError(f'TextSerializer stores strings, got {type(value).__name__}')
        return value.encode("utf-8")

    def load(self, data: bytes) -> str:
        return data.decode("utf-8")


SERIALIZERS = {
    'pickle': PickleSerializer,
    'json': JSONSerializer,
    'yaml': YAMLSerializer,
    'text': TextSerializer,
}
