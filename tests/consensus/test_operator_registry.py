# tests/consensus/test_operator_registry.py
import threading

import pytest

from dss_core.consensus.consensus_errors import RegistryError
from dss_core.consensus.operator_registry import OperatorRegistry
from dss_core.core.datatypes import BlsPublicKey, Operator
from dss_core.monitoring.metrics import get_metrics_manager


@pytest.fixture
def registry():
    return OperatorRegistry()


def test_register_is_idempotent(registry, operators):
    assert registry.register(operators[0]) is True
    assert registry.register(operators[0]) is False
    assert len(registry) == 1


def test_identity_ignores_address_case(registry, operators):
    op = operators[0]
    lowered = Operator(public_key=op.public_key.lower(), url=op.url)
    registry.register(op)
    assert registry.is_registered(lowered)
    assert registry.register(lowered) is False


def test_same_address_different_url_is_distinct(registry, operators):
    op = operators[0]
    registry.register(op)
    registry.register(Operator(public_key=op.public_key, url="http://elsewhere.test:9000"))
    assert len(registry) == 2


def test_is_registered(registry, operators):
    registry.register(operators[0])
    assert registry.is_registered(operators[0])
    assert not registry.is_registered(operators[1])


def test_snapshot_is_isolated_from_later_writes(registry, operators):
    registry.register(operators[0])
    snapshot = registry.snapshot()
    registry.register(operators[1])
    assert snapshot == frozenset({operators[0]})
    assert len(registry.snapshot()) == 2


def test_reregistering_with_new_bls_key_replaces_it(registry, operators):
    op = operators[0]
    key_1 = BlsPublicKey(g1="0x" + "11" * 64, g2="0x" + "22" * 128)
    key_2 = BlsPublicKey(g1="0x" + "33" * 64, g2="0x" + "44" * 128)
    registry.register(Operator(public_key=op.public_key, url=op.url, bls_public_key=key_1))
    assert registry.register(Operator(public_key=op.public_key, url=op.url, bls_public_key=key_2)) is False

    (stored,) = registry.snapshot()
    assert stored.bls_public_key == key_2


def test_register_updates_gauge(registry, operators):
    registry.register(operators[0])
    registry.register(operators[1])
    registry_metrics = get_metrics_manager().get_registry()
    assert registry_metrics.get_sample_value("dss_registered_operators") == 2


def test_concurrent_registration(registry, operators):
    threads = [
        threading.Thread(target=registry.register, args=(op,))
        for op in operators * 4
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(registry) == len(operators)


def test_lock_timeout_raises_registry_error(operators):
    registry = OperatorRegistry(lock_timeout=0.05)
    held = threading.Event()
    release = threading.Event()

    def hold_lock():
        with registry._lock:
            held.set()
            release.wait(2)

    holder = threading.Thread(target=hold_lock)
    holder.start()
    held.wait(2)
    try:
        with pytest.raises(RegistryError):
            registry.register(operators[0])
    finally:
        release.set()
        holder.join()
