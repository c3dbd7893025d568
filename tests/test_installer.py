from fakes import FakeAdmin, FakeRuntime, make_dna, write_dna

from alwayson import state
from alwayson.bundle import derive_app_id
from alwayson.errors import AdminError, BundleReadError, InitError, InstallError
from alwayson.installer import reconcile
from alwayson.models import AppDescriptor

WITH_INIT = {"dna-dna": {"name": "forum", "zomes": [
    {"name": "profiles", "functions": ["get_profile"]},
    {"name": "posts", "functions": ["init", "create_post"]},
]}}


def _runtime(**admin_kwargs):
    return FakeRuntime(admin=FakeAdmin(**admin_kwargs))


def test_installs_missing_and_initializes_cells(tmp_path):
    rt = _runtime(definitions=WITH_INIT)
    desired = [AppDescriptor(write_dna(tmp_path, "forum"))]

    result = reconcile(desired, None, rt)

    app_id = derive_app_id(make_dna("forum"))
    assert result.installed == [app_id]
    assert result.ok
    assert rt.admin().install_calls == [app_id]
    assert rt.invocations == [(app_id, f"{app_id[:8]}-dna", "posts/init", None)]


def test_second_run_makes_no_install_calls(tmp_path):
    rt = _runtime(definitions=WITH_INIT)
    paths = [write_dna(tmp_path, "forum"), write_dna(tmp_path, "chat")]

    first = reconcile([AppDescriptor(p) for p in paths], None, rt)
    second = reconcile([AppDescriptor(p) for p in paths], None, rt)

    assert len(first.installed) == 2
    assert second.installed == []
    assert second.skipped == first.installed
    assert len(rt.admin().install_calls) == 2
    assert len(rt.invocations) == 2


def test_explicit_installed_set_is_trusted(tmp_path):
    rt = _runtime()
    path = write_dna(tmp_path, "forum")
    app_id = derive_app_id(make_dna("forum"))

    result = reconcile([AppDescriptor(path)], {app_id}, rt)

    assert result.installed == []
    assert rt.admin().install_calls == []


def test_same_content_twice_is_installed_once(tmp_path):
    rt = _runtime()
    a = write_dna(tmp_path, "forum")
    copy = tmp_path / "copy.dna"
    copy.write_bytes(a.read_bytes())

    result = reconcile([AppDescriptor(a), AppDescriptor(copy)], set(), rt)

    assert len(result.installed) == 1
    assert len(rt.admin().install_calls) == 1


def test_bad_bundle_does_not_block_the_others(tmp_path):
    rt = _runtime()
    first = write_dna(tmp_path, "forum")
    broken = tmp_path / "broken.dna"
    broken.write_bytes(b"garbage")
    third = write_dna(tmp_path, "chat")

    result = reconcile([AppDescriptor(p) for p in (first, broken, third)], set(), rt)

    assert result.installed == [derive_app_id(make_dna("forum")),
                                derive_app_id(make_dna("chat"))]
    assert len(result.errors) == 1
    assert isinstance(result.errors[0], BundleReadError)
    assert "broken.dna" in str(result.errors[0])
    assert state.notifications[0]["level"] == "error"


def test_install_error_is_recorded_and_skipped(tmp_path):
    bad_id = derive_app_id(make_dna("forum"))
    rt = _runtime(fail_install={bad_id})
    paths = [write_dna(tmp_path, "forum"), write_dna(tmp_path, "chat")]

    result = reconcile([AppDescriptor(p) for p in paths], set(), rt)

    assert result.installed == [derive_app_id(make_dna("chat"))]
    assert isinstance(result.errors[0], InstallError)
    assert result.errors[0].app_id == bad_id


def test_cells_without_init_are_skipped(tmp_path):
    rt = _runtime(definitions={"dna-dna": {"zomes": [{"name": "posts", "functions": ["list"]}]}})

    result = reconcile([AppDescriptor(write_dna(tmp_path))], set(), rt)

    assert result.ok
    assert len(result.installed) == 1
    assert rt.invocations == []


def test_init_failure_is_reported_but_app_stays_installed(tmp_path):
    rt = _runtime(definitions=WITH_INIT)
    rt.fail_cells = {"-dna"}
    app_id = derive_app_id(make_dna("forum"))

    result = reconcile([AppDescriptor(write_dna(tmp_path, "forum"))], set(), rt)

    assert result.installed == [app_id]
    assert app_id in rt.admin().apps
    [err] = result.errors
    assert isinstance(err, InitError)
    assert err.app_id == app_id
    assert err.cell_id == f"{app_id[:8]}-dna"
    assert app_id in str(err)


def test_zome_without_name_is_not_an_init_target(tmp_path):
    rt = _runtime(definitions={"dna-dna": {"zomes": [
        {"functions": ["init"]},
        {"name": "posts", "functions": ["init"]},
    ]}})

    result = reconcile([AppDescriptor(write_dna(tmp_path))], set(), rt)

    assert result.ok
    assert [inv[2] for inv in rt.invocations] == ["posts/init"]


def test_only_nameless_init_zomes_means_no_init_call(tmp_path):
    rt = _runtime(definitions={"dna-dna": {"zomes": [{"functions": ["init"]}]}})

    result = reconcile([AppDescriptor(write_dna(tmp_path))], set(), rt)

    assert result.ok
    assert len(result.installed) == 1
    assert rt.invocations == []


def test_unusable_app_interface_becomes_init_error(tmp_path):
    class NoAppInterface(FakeRuntime):
        def app_channel(self, app_id):
            raise AdminError("malformed attach_app_interface reply: {}")

    rt = NoAppInterface(admin=FakeAdmin(definitions=WITH_INIT))
    paths = [write_dna(tmp_path, "forum"), write_dna(tmp_path, "chat")]

    result = reconcile([AppDescriptor(p) for p in paths], set(), rt)

    assert len(result.installed) == 2
    assert len(result.errors) == 2
    assert all(isinstance(e, InitError) for e in result.errors)
    assert "attach_app_interface" in str(result.errors[0])
