from libs.document_store.keys import StoreKeys, index_value


def test_document_key():
    assert StoreKeys.document("bridge", "commands", "cmd_1") == "bridge:doc:commands:cmd_1"


def test_index_key_is_order_independent():
    a = StoreKeys.index("bridge", "commands", {"status": "pending", "account_id": "acc-1"})
    b = StoreKeys.index("bridge", "commands", {"account_id": "acc-1", "status": "pending"})

    assert a == b == "bridge:idx:commands:account_id=acc-1|status=pending"


def test_index_value_rendering():
    assert index_value(True) == "true"
    assert index_value(False) == "false"
    assert index_value(None) == "null"
    assert index_value(3) == "3"
