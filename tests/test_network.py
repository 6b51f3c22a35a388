import pytest

from kubeletscrape.network import from_raw_with_fallback_to_default_interface


def _groups(node_metrics, default="thisIsTheDefault"):
    return {
        "node": {"fooNode": node_metrics},
        "network": {"interfaces": {"default": default}},
    }


def test_uses_raw():
    groups = _groups({"name": "", "rxBytes": 51419684038})
    fetch = from_raw_with_fallback_to_default_interface("rxBytes")
    assert fetch("node", "fooNode", groups) == 51419684038


def test_uses_fallback():
    groups = _groups(
        {
            "name": "",
            "interfaces": {
                "thisIsTheDefault": {
                    "rxBytes": 51419684038,
                    "txBytes": 25630208577,
                    "errors": 0,
                }
            },
        }
    )
    fetch = from_raw_with_fallback_to_default_interface("rxBytes")
    assert fetch("node", "fooNode", groups) == 51419684038


def test_group_not_found():
    fetch = from_raw_with_fallback_to_default_interface("rxBytes")
    with pytest.raises(LookupError, match="^group not found$"):
        fetch("pod", "fooNode", _groups({}))


def test_entity_not_found():
    fetch = from_raw_with_fallback_to_default_interface("rxBytes")
    with pytest.raises(LookupError, match="^entity not found$"):
        fetch("node", "barNode", _groups({}))


def test_network_group_missing():
    fetch = from_raw_with_fallback_to_default_interface("rxBytes")
    with pytest.raises(LookupError, match="fallback failed: network group not found"):
        fetch("node", "fooNode", {"node": {"fooNode": {}}})


def test_default_interface_not_set():
    fetch = from_raw_with_fallback_to_default_interface("rxBytes")
    with pytest.raises(LookupError, match="default interface not set"):
        fetch("node", "fooNode", _groups({}, default=""))


def test_default_interface_not_a_name():
    fetch = from_raw_with_fallback_to_default_interface("rxBytes")
    with pytest.raises(LookupError, match="not a valid interface name"):
        fetch("node", "fooNode", _groups({}, default=3))


def test_interfaces_metrics_missing():
    fetch = from_raw_with_fallback_to_default_interface("rxBytes")
    with pytest.raises(LookupError, match="interfaces metrics not found"):
        fetch("node", "fooNode", _groups({"name": ""}))


def test_interfaces_wrong_format():
    fetch = from_raw_with_fallback_to_default_interface("rxBytes")
    with pytest.raises(LookupError, match="wrong format for interfaces metrics"):
        fetch("node", "fooNode", _groups({"interfaces": "eth0"}))


def test_default_interface_metrics_missing():
    fetch = from_raw_with_fallback_to_default_interface("rxBytes")
    groups = _groups({"interfaces": {"eth1": {"rxBytes": 1}}})
    with pytest.raises(LookupError, match="default interface metrics not found"):
        fetch("node", "fooNode", groups)


def test_metric_missing_on_default_interface():
    fetch = from_raw_with_fallback_to_default_interface("rxBytes")
    groups = _groups({"interfaces": {"thisIsTheDefault": {"txBytes": 1}}})
    with pytest.raises(LookupError, match="metric not found for default interface"):
        fetch("node", "fooNode", groups)