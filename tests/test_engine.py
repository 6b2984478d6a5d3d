import asyncio
from unittest.mock import MagicMock

import pytest

from scriptmanager.capture import CaptureItem, decode, find_blocks, render
from scriptmanager.config import load_config
from scriptmanager.engine import ScriptEngine
from scriptmanager.exceptions import MoveIncompleteError, NotFoundError, TransportFailure
from scriptmanager.imports import Import
from scriptmanager.services import InMemoryEditService, ServiceRegistry
from scriptmanager.summary import DocumentationResolver

from .conftest import CANONICAL_FOO, SUMMARY_TAG

COMMON = "User:Alice/common.js"
FOO = Import.of_local("User:Foo/Bar.js")
FOO_CALL = "mw.loader.load('//en.wikipedia.org/w/index.php?title=User:Foo/Bar.js&action=raw&ctype=text/javascript');"
OTHER = CaptureItem(
    key="url:common:https://example.com/a.js", name="A", load_call="mw.loader.load('https://example.com/a.js');"
)


# --- Install ---


def test_install_on_empty_page(engine, service):
    assert asyncio.run(engine.install(FOO))
    assert service.pages[COMMON] == CANONICAL_FOO + "\n"
    (request,) = service.requests
    assert request.appendtext == CANONICAL_FOO + "\n"
    assert request.text is None
    assert request.summary == f"Installing [[User:Foo/Bar.js]] {SUMMARY_TAG}"


def test_install_is_idempotent(engine, service):
    asyncio.run(engine.install(FOO))
    assert not asyncio.run(engine.install(FOO))
    assert not asyncio.run(engine.install(Import.of_local("user:foo/bar.js")))
    assert len(service.requests) == 1


def test_install_keeps_existing_content(engine, service):
    service.pages[COMMON] = "// my settings\nwindow.foo = 1;\n\n\n"
    asyncio.run(engine.install(FOO))
    assert service.pages[COMMON] == f"// my settings\nwindow.foo = 1;\n{CANONICAL_FOO}\n"
    assert service.requests[0].text is not None


def test_install_keeps_trailing_spaces_of_last_line(engine, service):
    service.pages[COMMON] = "window.foo = 1;  \n\n"
    asyncio.run(engine.install(FOO))
    assert service.pages[COMMON] == f"window.foo = 1;  \n{CANONICAL_FOO}\n"


def test_concurrent_installs_add_one_line(engine, service):
    """Operations on the same script wait for each other instead of reading the same old text."""
    read_text = service.get_text

    async def slow_get_text(title):
        await asyncio.sleep(0)
        return await read_text(title)

    service.get_text = slow_get_text

    async def install_twice():
        return await asyncio.gather(engine.install(FOO), engine.install(FOO))

    assert sorted(asyncio.run(install_twice())) == [False, True]
    assert service.pages[COMMON] == CANONICAL_FOO + "\n"


def test_install_appends_after_single_newline(engine, service):
    service.pages[COMMON] = "window.foo = 1;\n"
    asyncio.run(engine.install(FOO))
    assert service.requests[0].appendtext == CANONICAL_FOO + "\n"
    assert service.pages[COMMON] == f"window.foo = 1;\n{CANONICAL_FOO}\n"


def test_install_on_wiki_outside_org(service):
    """Page loader URLs on other hosts are recognized as the page they load."""
    config = load_config(server_name="wiki.example.com", user_name="Alice")
    engine = ScriptEngine(config, ServiceRegistry(service))
    assert asyncio.run(engine.install(FOO))
    assert not asyncio.run(engine.install(FOO))
    assert service.pages[COMMON].count("//wiki.example.com/w/index.php?title=User:Foo/Bar.js") == 1
    assert asyncio.run(engine.uninstall(FOO))
    assert service.pages[COMMON] == ""


def test_install_next_to_url_without_title(engine, service):
    empty_title = "mw.loader.load('//en.wikipedia.org/w/index.php?title=&');"
    service.pages[COMMON] = empty_title + "\n"
    assert asyncio.run(engine.install(FOO))
    assert service.pages[COMMON] == f"{empty_title}\n{CANONICAL_FOO}\n"


def test_install_sees_captured_scripts(engine, service):
    service.pages[COMMON] = "\n".join(render([CaptureItem(key=FOO.key, name="Bar", load_call=FOO_CALL)]))
    assert not asyncio.run(engine.install(FOO))
    assert service.requests == []


def test_install_global_target_uses_cross_site_service(config):
    primary, cross_site = InMemoryEditService(), InMemoryEditService()
    engine = ScriptEngine(config, ServiceRegistry(primary, cross_site))
    asyncio.run(engine.install(Import.of_local("User:Foo/Bar.js", "global")))
    assert primary.requests == []
    (request,) = cross_site.requests
    assert request.title == "User:Alice/global.js"
    assert request.appendtext.endswith(" // Backlink: [[w:en:User:Foo/Bar.js]]\n")
    assert request.summary == f"Installing [[w:en:User:Foo/Bar.js]] {SUMMARY_TAG}"


def test_install_uses_documentation_link(config, service):
    async def fetch(host, title):
        return "// Documentation: https://en.wikipedia.org/wiki/User:Foo/Doc"

    engine = ScriptEngine(config, ServiceRegistry(service), resolver=DocumentationResolver(fetch, config))
    asyncio.run(engine.install(FOO))
    assert service.pages[COMMON].endswith(" // Backlink: [[w:en:User:Foo/Doc]]\n")
    assert service.requests[0].summary.startswith("Installing [[w:en:User:Foo/Doc]]")


# --- Uninstall ---


def test_uninstall_removes_every_matching_line(engine, service):
    service.pages[COMMON] = "\n".join(
        [
            "// header",
            "importScript('User:Foo/Bar.js');",
            CANONICAL_FOO,
            "//importScript('user:foo/bar.js');",
            "importScript('User:Foo/Other.js');",
            "",
        ]
    )
    assert asyncio.run(engine.uninstall(FOO))
    assert service.pages[COMMON] == "// header\nimportScript('User:Foo/Other.js');\n"
    assert service.requests[0].summary == f"Uninstalling [[User:Foo/Bar.js]] {SUMMARY_TAG}"


def test_uninstall_missing_script(engine, service):
    service.pages[COMMON] = "importScript('User:Foo/Other.js');"
    with pytest.raises(NotFoundError):
        asyncio.run(engine.uninstall(FOO))
    assert service.requests == []


def test_uninstall_drops_captured_item(engine, service, config):
    lines = ["window.x = 1;", ""] + render([CaptureItem(key=FOO.key, name="Bar", load_call=FOO_CALL), OTHER])
    service.pages[COMMON] = "\n".join(lines)
    assert asyncio.run(engine.uninstall(FOO))
    new_lines = service.pages[COMMON].split("\n")
    assert decode(new_lines) == [OTHER]
    assert new_lines[:2] == ["window.x = 1;", ""]


def test_uninstall_rerenders_wrapper_in_place(engine, service):
    wrapper = render([CaptureItem(key=FOO.key, name="Bar", load_call=FOO_CALL), OTHER])
    service.pages[COMMON] = "\n".join(["window.x = 1;"] + wrapper + ["window.y = 2;"])
    assert asyncio.run(engine.uninstall(FOO))
    assert service.pages[COMMON] == "\n".join(["window.x = 1;"] + render([OTHER]) + ["window.y = 2;"])


def test_uninstall_removes_empty_wrapper(engine, service):
    lines = ["window.x = 1;", ""] + render([CaptureItem(key=FOO.key, name="Bar", load_call=FOO_CALL)])
    service.pages[COMMON] = "\n".join(lines)
    asyncio.run(engine.uninstall(FOO))
    assert service.pages[COMMON] == "window.x = 1;"


def test_uninstall_cross_wiki_legacy_line(engine, service):
    """Hand-written loader lines the grammar does not recognize are still found by title."""
    imp = Import(page="User:X/y.js", wiki="de.wikipedia")
    legacy = "mw.loader.load(base + '/w/index.php?title=User:X/y.js&action=raw&ctype=text/javascript');"
    service.pages[COMMON] = f"{legacy}\nwindow.x = 1;"
    asyncio.run(engine.uninstall(imp))
    assert service.pages[COMMON] == "window.x = 1;"


# --- Enable / disable ---


def test_disable_enable_symmetry(engine, service):
    original = f"// header\n{CANONICAL_FOO}\n  importScript('User:Foo/Bar.js');\n"
    service.pages[COMMON] = original
    assert asyncio.run(engine.disable(FOO))
    assert service.pages[COMMON] == f"// header\n//{CANONICAL_FOO}\n  //importScript('User:Foo/Bar.js');\n"
    assert service.requests[-1].summary == f"Disabling [[User:Foo/Bar.js]] {SUMMARY_TAG}"
    assert asyncio.run(engine.enable(FOO))
    assert service.pages[COMMON] == original
    assert service.requests[-1].summary == f"Enabling [[User:Foo/Bar.js]] {SUMMARY_TAG}"


def test_disable_twice_is_a_noop(engine, service):
    service.pages[COMMON] = CANONICAL_FOO
    asyncio.run(engine.disable(FOO))
    assert not asyncio.run(engine.disable(FOO))
    assert len(service.requests) == 1


def test_enable_strips_one_space(engine, service):
    service.pages[COMMON] = "// importScript('User:Foo/Bar.js');"
    asyncio.run(engine.enable(FOO))
    assert service.pages[COMMON] == "importScript('User:Foo/Bar.js');"


def test_disable_missing_script(engine, service):
    with pytest.raises(NotFoundError):
        asyncio.run(engine.disable(FOO))


# --- Move ---


def test_move(engine, service):
    service.pages[COMMON] = f"window.x = 1;\n{CANONICAL_FOO}\n"
    assert asyncio.run(engine.move(FOO, "vector"))
    assert service.pages["User:Alice/vector.js"] == CANONICAL_FOO + "\n"
    assert service.pages[COMMON] == "window.x = 1;\n"


def test_move_to_same_target(engine, service):
    service.pages[COMMON] = CANONICAL_FOO
    assert not asyncio.run(engine.move(FOO, "common"))
    assert service.requests == []


def test_move_missing_script(engine, service):
    with pytest.raises(NotFoundError):
        asyncio.run(engine.move(FOO, "vector"))
    assert service.requests == []


def test_move_partial_failure(engine, service):
    """If the old line cannot be removed the script stays on both targets."""
    service.pages[COMMON] = CANONICAL_FOO + "\n"
    record = service.post_edit

    async def post_edit(request):
        if request.title == COMMON:
            raise TransportFailure("save failed")
        await record(request)

    service.post_edit = MagicMock(side_effect=post_edit)
    with pytest.raises(MoveIncompleteError) as excinfo:
        asyncio.run(engine.move(FOO, "vector"))
    assert excinfo.value.source_target == "common"
    assert excinfo.value.new_target == "vector"
    assert isinstance(excinfo.value.__cause__, TransportFailure)
    assert service.post_edit.call_count == 2
    assert service.pages[COMMON] == CANONICAL_FOO + "\n"
    assert service.pages["User:Alice/vector.js"] == CANONICAL_FOO + "\n"


# --- Normalize ---


def test_normalize_rewrites_statements(engine, service):
    service.pages[COMMON] = "// header\nimportScript('User:Foo/Bar.js')\n//importScript('User:Foo/Bar.js');\nvar x;"
    assert asyncio.run(engine.normalize("common"))
    assert service.pages[COMMON] == f"// header\n{CANONICAL_FOO}\n//{CANONICAL_FOO}\nvar x;"
    assert service.requests[0].summary == f"Normalizing script imports {SUMMARY_TAG}"


def test_normalize_is_a_noop_on_canonical_pages(engine, service):
    service.pages[COMMON] = f"{CANONICAL_FOO}\nvar x;\n"
    assert not asyncio.run(engine.normalize("common"))
    assert service.requests == []


def test_normalize_leaves_capture_wrapper_alone(engine, service):
    wrapper = render([CaptureItem(key=FOO.key, name="Bar", load_call="mw.loader.load( 'x' );")])
    service.pages[COMMON] = "\n".join(["importScript('User:Foo/Other.js');", ""] + wrapper)
    asyncio.run(engine.normalize("common"))
    lines = service.pages[COMMON].split("\n")
    assert lines[0].startswith("mw.loader.load('//en.wikipedia.org/w/index.php?title=User:Foo/Other.js")
    assert lines[2:] == wrapper


def test_example_document():
    """Install, uninstall and normalize on a page holding a single importScript line."""
    config = load_config(server_name="example.org", user_name="Alice")
    original = "importScript('User:Foo/Bar.js');"

    def run(operation):
        service = InMemoryEditService({COMMON: original})
        engine = ScriptEngine(config, ServiceRegistry(service))
        result = asyncio.run(operation(engine))
        return result, service.pages[COMMON]

    assert run(lambda engine: engine.install(FOO)) == (False, original)
    assert run(lambda engine: engine.uninstall(FOO)) == (True, "")
    assert run(lambda engine: engine.normalize("common")) == (
        True,
        "mw.loader.load('//example.org/w/index.php?title=User:Foo/Bar.js&action=raw&ctype=text/javascript');"
        " // Backlink: [[User:Foo/Bar.js]]",
    )


# --- Capture ---


def test_capture_and_decapture_round_trip(engine, service):
    original = f"// my stuff\n{CANONICAL_FOO}\n"
    service.pages[COMMON] = original
    assert asyncio.run(engine.capture(FOO, "Foo bar"))
    lines = service.pages[COMMON].split("\n")
    assert lines[:2] == ["// my stuff", ""]
    assert len(find_blocks(lines)) == 1
    assert decode(lines) == [CaptureItem(key=FOO.key, name="Foo bar", load_call=FOO_CALL)]
    assert service.requests[-1].summary == f"Capturing [[User:Foo/Bar.js]] {SUMMARY_TAG}"

    assert asyncio.run(engine.decapture(FOO))
    assert service.pages[COMMON].rstrip() == original.rstrip()
    assert service.requests[-1].summary == f"Releasing [[User:Foo/Bar.js]] from capture {SUMMARY_TAG}"


def test_capture_keeps_other_items(engine, service):
    service.pages[COMMON] = "\n".join([CANONICAL_FOO, ""] + render([OTHER]))
    asyncio.run(engine.capture(FOO))
    lines = service.pages[COMMON].split("\n")
    assert len(find_blocks(lines)) == 1
    assert [item.key for item in decode(lines)] == [OTHER.key, FOO.key]
    assert decode(lines)[1].name == "User:Foo/Bar.js"


def test_capture_again_keeps_name(engine, service):
    service.pages[COMMON] = "\n".join(render([CaptureItem(key=FOO.key, name="Bar", load_call=FOO_CALL)]))
    assert not asyncio.run(engine.capture(FOO))
    assert service.requests == []


def test_capture_missing_script(engine, service):
    service.pages[COMMON] = "window.x = 1;"
    with pytest.raises(NotFoundError):
        asyncio.run(engine.capture(FOO))


def test_decapture_example(engine, service):
    item = CaptureItem(key="local:common:User:Foo/Bar.js", name="Bar", load_call=FOO_CALL)
    service.pages[COMMON] = "\n".join(render([item]))
    asyncio.run(engine.decapture(FOO))
    assert service.pages[COMMON] == CANONICAL_FOO


def test_decapture_does_not_duplicate_plain_line(engine, service):
    service.pages[COMMON] = "\n".join([CANONICAL_FOO, ""] + render([CaptureItem(key=FOO.key, load_call=FOO_CALL)]))
    asyncio.run(engine.decapture(FOO))
    assert service.pages[COMMON] == CANONICAL_FOO


def test_decapture_errors(engine, service):
    service.pages[COMMON] = CANONICAL_FOO
    with pytest.raises(NotFoundError):
        asyncio.run(engine.decapture(FOO))
    service.pages[COMMON] = "\n".join(render([OTHER]))
    with pytest.raises(NotFoundError):
        asyncio.run(engine.decapture(FOO))


# --- Reads ---


def test_list_imports_and_captured(engine, service):
    service.pages[COMMON] = "\n".join([CANONICAL_FOO, "var x;", ""] + render([OTHER]))
    imports = asyncio.run(engine.list_imports("common"))
    assert [imp.page for imp in imports] == ["User:Foo/Bar.js"]
    assert asyncio.run(engine.list_captured("common")) == [OTHER]
    assert service.fetches == [COMMON]


def test_reads_are_cached_until_an_edit(engine, service):
    asyncio.run(engine.get_text("common"))
    asyncio.run(engine.get_text("common"))
    assert service.fetches == [COMMON]
    asyncio.run(engine.install(FOO))
    assert asyncio.run(engine.get_text("common")) == CANONICAL_FOO + "\n"
    assert asyncio.run(engine.get_text("common", refresh=True)) == CANONICAL_FOO + "\n"


def test_targets_for_script(engine, service):
    service.pages[COMMON] = CANONICAL_FOO
    service.pages["User:Alice/vector.js"] = "importScript('User:Foo/Bar.js');"
    service.pages["User:Alice/monobook.js"] = "importScript('User:Foo/Other.js');"
    assert asyncio.run(engine.targets_for_script("user:foo/bar.js")) == ["common", "vector"]
    loaded = asyncio.run(engine.load_all())
    assert list(loaded) == engine.config.targets


def test_transport_failures_propagate(engine, service):
    async def fail(title):
        raise TransportFailure("offline")

    service.get_text = fail
    with pytest.raises(TransportFailure):
        asyncio.run(engine.install(FOO))
