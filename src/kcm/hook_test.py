import pytest

from kcm.hook import Hook, HookError, HookType, UnsupportedHookKindError, parse_hook_types, sort_hooks
from kcm.resource import Resource


def _job(name: str = "cleanup") -> Resource:
    return Resource("Job", name, "default", b"kind: Job\n")


def test__parse_hook_types() -> None:
    assert parse_hook_types("pre-apply, post-delete") == [HookType.PRE_APPLY, HookType.POST_DELETE]
    assert parse_hook_types("pre-create,pre-upgrade,post-upgrade") == [HookType.PRE_APPLY, HookType.POST_APPLY]
    assert parse_hook_types("") == []
    with pytest.raises(HookError):
        parse_hook_types("pre-install")


def test__Hook__from_resource() -> None:
    hook = Hook.from_resource(
        _job(),
        {
            "kcm/hooks": "pre-delete",
            "kcm/wait-for": "condition=complete",
            "kcm/wait-timeout": "1m30s",
            "kcm/delete-after-completion": "true",
        },
    )

    assert hook.types == [HookType.PRE_DELETE]
    assert hook.wait_for == "condition=complete"
    assert hook.wait_timeout == 90.0
    assert hook.delete_after_completion
    assert str(hook) == "pre-delete/Job/default/cleanup (wait-for=condition=complete, wait-timeout=90s)"


def test__Hook__from_resource__legacy_annotations() -> None:
    hook = Hook.from_resource(
        _job(),
        {
            "kcm/hook": "post-create",
            "kcm/hook-wait-for": "condition=complete",
            "kcm/hook-wait-timeout": "10s",
            "kcm/hook-policy": "delete-after-completion",
        },
    )

    assert hook.types == [HookType.POST_APPLY]
    assert hook.wait_timeout == 10.0
    assert hook.policy == "delete-after-completion"
    assert hook.delete_after_completion


def test__Hook__from_resource__fire_and_forget() -> None:
    hook = Hook.from_resource(_job(), {"kcm/hooks": "post-apply"})
    assert hook.wait_for == ""
    assert hook.wait_timeout is None
    assert not hook.delete_after_completion


def test__Hook__from_resource__unsupported_kind() -> None:
    with pytest.raises(UnsupportedHookKindError):
        Hook.from_resource(Resource("Pod", "cleanup"), {"kcm/hooks": "pre-apply"})


@pytest.mark.parametrize(
    "annotations",
    [
        {"kcm/hooks": "pre-apply", "kcm/wait-timeout": "soon"},
        {"kcm/hooks": "pre-apply", "kcm/hook-policy": "keep-forever"},
        {"kcm/hooks": "pre-apply", "kcm/delete-after-completion": "true"},
        {"kcm/hooks": "pre-apply", "kcm/wait-for": "condition=complete", "kcm/delete-after-completion": "maybe"},
        {"kcm/hooks": " , "},
    ],
)
def test__Hook__from_resource__invalid(annotations: dict[str, str]) -> None:
    with pytest.raises(HookError):
        Hook.from_resource(_job(), annotations)


def test__sort_hooks() -> None:
    hooks = [
        Hook(_job("b"), [HookType.PRE_APPLY]),
        Hook(_job("a"), [HookType.PRE_APPLY], wait_for="condition=complete"),
        Hook(_job("a"), [HookType.PRE_APPLY], wait_for="condition=available"),
    ]

    assert [(h.resource.name, h.wait_for) for h in sort_hooks(hooks)] == [
        ("a", "condition=available"),
        ("a", "condition=complete"),
        ("b", ""),
    ]
