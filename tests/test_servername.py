# MIT License © 2025 Motohiro Suzuki
import pytest

from policy.servername import (
    IgnoreMismatchRouter,
    RejectMismatchRouter,
    ServernameDecision,
    ServernameMode,
    ServernameRole,
    make_router,
)


@pytest.mark.parametrize("router", [IgnoreMismatchRouter(), RejectMismatchRouter()])
def test_absent_name_is_noack_on_primary(router):
    for name in (None, ""):
        r = router.route(name)
        assert r.decision == ServernameDecision.NOACK
        assert r.role == ServernameRole.SERVER1
        assert not r.switch_to_secondary


@pytest.mark.parametrize("router", [IgnoreMismatchRouter(), RejectMismatchRouter()])
def test_known_names(router):
    r2 = router.route("server2")
    assert r2.decision == ServernameDecision.OK
    assert r2.switch_to_secondary

    r1 = router.route("server1")
    assert r1.decision == ServernameDecision.OK
    assert r1.role == ServernameRole.SERVER1
    assert not r1.switch_to_secondary


def test_unknown_name_ignored():
    r = IgnoreMismatchRouter().route("invalid")
    assert r.decision == ServernameDecision.NOACK
    assert r.role == ServernameRole.SERVER1


def test_unknown_name_rejected():
    r = RejectMismatchRouter().route("invalid")
    assert r.decision == ServernameDecision.ALERT_FATAL
    assert r.role is None


def test_make_router():
    assert make_router(ServernameMode.NONE) is None
    assert isinstance(make_router(ServernameMode.IGNORE_MISMATCH), IgnoreMismatchRouter)
    assert isinstance(make_router(ServernameMode.REJECT_MISMATCH), RejectMismatchRouter)
