import pytest
from src.collab.errors import AuthenticationRequiredError, FailedStatusRequirementsError
from src.collab.identity import IdentityProvider
from src.collab.notifier import NoticeKind, Notifier

def test_notifier_dispatch_and_history():
    """提示分发给监听者并保留历史"""
    notifier = Notifier(history_size=2)
    received = []

    def broken(_notice):
        raise RuntimeError("boom")

    notifier.subscribe(broken)
    unsubscribe = notifier.subscribe(received.append)

    notifier.notify(NoticeKind.INFO, "uno")
    notice = notifier.error(NoticeKind.VALIDATION, "dos", FailedStatusRequirementsError(data={"case_id": "x"}))
    assert notice.destructive
    assert notice.description == FailedStatusRequirementsError.default_message
    assert notice.data == {"case_id": "x"}
    assert [n.title for n in received] == ["uno", "dos"]

    unsubscribe()
    notifier.notify(NoticeKind.SUCCESS, "tres")
    assert len(received) == 2
    assert [n.title for n in notifier.history] == ["dos", "tres"]
    assert not notifier.last.destructive

def test_identity_provider():
    """身份提供方广播登录和登出"""
    identity = IdentityProvider()
    events = []
    identity.subscribe(events.append)

    with pytest.raises(AuthenticationRequiredError):
        identity.require()
    with pytest.raises(AuthenticationRequiredError):
        identity.sign_in("   ")

    identity.sign_in("alice@example.com")
    assert identity.require().user_identifier == "alice@example.com"
    identity.sign_out()
    identity.sign_out()
    assert [e.user_identifier if e else None for e in events] == ["alice@example.com", None]
