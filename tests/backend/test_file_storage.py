import pytest

from scstorage.storage import create_storage
from scstorage.storage.file_backend import FileStorageBackend
from scstorage.storage.memory_backend import MemoryStorage
from scstorage.storage.serializer import JSONSerializer, TextSerializer, YAMLSerializer


def test_save_load_delete_and_list_keys(tmp_path):
    b = FileStorageBackend(data_dir=tmp_path / "data_test")
    ns = "unittest"
    key = "item1"
    value = {"x": 1}

    b.save(ns, key, value)
    assert b.exists(ns, key) is True
    keys = list(b.list_keys(ns))
    assert key in keys
    loaded = b.load(ns, key)
    assert loaded == value
    b.delete(ns, key)
    assert b.exists(ns, key) is False
    with pytest.raises(KeyError):
        b.load(ns, key)


def test_keys_with_path_characters_round_trip(tmp_path):
    b = FileStorageBackend(data_dir=tmp_path, serializer=JSONSerializer())
    b.save("indexeddb", "my/db name", [1, 2])
    assert list(b.list_keys("indexeddb")) == ["my/db name"]
    assert (tmp_path / "indexeddb" / "my%2Fdb%20name.json").exists()
    # no temporary files are left behind
    assert not list((tmp_path / "indexeddb").glob("*.tmp"))


def test_text_serializer_only_takes_strings(tmp_path):
    b = FileStorageBackend(data_dir=tmp_path, serializer=TextSerializer())
    b.save("local_storage", "k", '{"data": 1}')
    assert b.load("local_storage", "k") == '{"data": 1}'
    with pytest.raises(TypeError):
        b.save("local_storage", "k", 1)


def test_yaml_serializer_round_trip():
    s = YAMLSerializer()
    assert s.load(s.dump({"a": [1, 2]})) == {"a": [1, 2]}


def test_create_storage_kinds(tmp_path):
    data_dir = str(tmp_path / "data_dict")
    s = create_storage(serializer='json', data_dir=data_dir)
    assert isinstance(s, FileStorageBackend)
    assert isinstance(s.serializer, JSONSerializer)
    s.save('ns', 'doc', {'a': 1})
    assert s.load('ns', 'doc') == {'a': 1}

    assert isinstance(create_storage(kind='memory'), MemoryStorage)


def test_create_storage_rejects_unknown(tmp_path):
    with pytest.raises(ValueError):
        create_storage(kind='cloud', data_dir=str(tmp_path))
    with pytest.raises(ValueError):
        create_storage(serializer='encrypted', data_dir=str(tmp_path))


def test_clear_only_touches_one_namespace(tmp_path):
    b = FileStorageBackend(data_dir=tmp_path, serializer=TextSerializer())
    b.save("local_storage", "a", "1")
    b.save("local_storage", "b", "2")
    b.save("other", "a", "3")
    b.clear("local_storage")
    assert list(b.list_keys("local_storage")) == []
    assert b.load("other", "a") == "3"
    with pytest.raises(KeyError):
        b.delete("local_storage", "a")
