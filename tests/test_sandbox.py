import pytest

from hopchain.core.config import Settings
from hopchain.providers.base import DecoderRef, PayloadBundle, SandboxStatus, TrapKind
from hopchain.providers.sandbox import SandboxEnvironment, SandboxHost

settings = Settings(sandbox_timeout_ms=2000, trap_log_limit=200)
host = SandboxHost(settings)
bundle = PayloadBundle(identifier="xyz", payload="cGxheWxpc3Q=", decoder=DecoderRef(inline=""),
                       page_url="https://player.test/prorcp/abc")


def _sets(run, name):
    return [e.value for e in run.trap_log.of_kind(TrapKind.SET) if e.name == name]


def test_decoder_reads_payload_and_writes_window():
    run = host.run('window["xyz"] = atob(document.getElementById("xyz").content);', bundle)
    assert run.status is SandboxStatus.COMPLETED
    assert _sets(run, "xyz") == ["playlist"]
    decodes = run.trap_log.of_kind(TrapKind.DECODE)
    assert decodes and decodes[0].value == "playlist"


def test_bare_assignment_goes_through_window():
    run = host.run('var url = "https://cdn.test/hls/" + "index.m3u8";', bundle)
    assert _sets(run, "url") == ["https://cdn.test/hls/index.m3u8"]
    assert run.trap_log.of_kind(TrapKind.SET)[0].looks_like_url


def test_query_selector_and_missing_element():
    run = host.run("""
        window.a = document.querySelector("#xyz").textContent;
        window.b = document.getElementById("nope") === null ? "none" : "found";
    """, bundle)
    assert _sets(run, "a") == ["cGxheWxpc3Q="]
    assert _sets(run, "b") == ["none"]


def test_blocked_capabilities_are_recorded():
    run = host.run("""
        try { fetch("https://evil.test/x"); } catch (e) { window.err = "caught"; }
        try { new XMLHttpRequest(); } catch (e) {}
        try { require("fs"); } catch (e) {}
    """, bundle)
    assert run.status is SandboxStatus.COMPLETED
    blocked = [e.name for e in run.trap_log.of_kind(TrapKind.BLOCKED)]
    assert blocked == ["fetch", "XMLHttpRequest", "require"]
    assert _sets(run, "err") == ["caught"]


def test_timers_run_synchronously():
    run = host.run("""
        setTimeout(function () { window.later = "https://cdn.test/a.m3u8"; }, 500);
        setTimeout(function () { throw new Error("inside timer"); }, 0);
    """, bundle)
    assert run.status is SandboxStatus.COMPLETED
    assert _sets(run, "later") == ["https://cdn.test/a.m3u8"]
    assert run.trap_log.of_kind(TrapKind.ERROR)


def test_console_and_location():
    run = host.run('console.log("hello", 1); window.h = location.hostname;', bundle)
    console = run.trap_log.of_kind(TrapKind.CONSOLE)
    assert console[0].name == "log"
    assert console[0].args == ("hello", "1")
    assert _sets(run, "h") == ["player.test"]


def test_navigation_is_recorded():
    run = host.run('window.location.href = "https://cdn.test/x.m3u8";', bundle)
    navs = run.trap_log.of_kind(TrapKind.NAVIGATE)
    assert [e.value for e in navs] == ["https://cdn.test/x.m3u8"]


def test_global_writes_outside_the_proxy_are_diffed():
    run = host.run('this.leaked = "https://cdn.test/leak.m3u8";', bundle)
    leaked = [e for e in run.trap_log.of_kind(TrapKind.SET) if e.name == "leaked"]
    assert leaked and leaked[0].scope == "global"


def test_completion_value_is_recorded():
    run = host.run('"https://cdn.test/" + "done.m3u8"', bundle)
    returns = run.trap_log.of_kind(TrapKind.RETURN)
    assert [e.value for e in returns] == ["https://cdn.test/done.m3u8"]


def test_throw_keeps_partial_log():
    run = host.run('window.first = "https://cdn.test/p.m3u8"; throw new Error("boom");', bundle)
    assert run.status is SandboxStatus.THREW
    assert run.error
    assert _sets(run, "first") == ["https://cdn.test/p.m3u8"]


def test_syntax_error_is_a_throw():
    run = host.run("window.x = ;", bundle)
    assert run.status is SandboxStatus.THREW


def test_runaway_loop_is_terminated():
    run = host.run("while (true) {}", bundle, timeout_ms=200)
    assert run.status is SandboxStatus.TIMED_OUT
    assert run.elapsed_ms < 5000


def test_log_limit_counts_dropped_entries():
    run = host.run("for (var i = 0; i < 500; i++) { console.log(i); }", bundle)
    assert len(run.trap_log) <= settings.trap_log_limit
    assert run.trap_log.dropped > 0


def test_runs_share_no_state():
    first = host.run('this.leak = "https://cdn.test/a.m3u8"; window.kept = "https://cdn.test/b.m3u8";', bundle)
    second = host.run("window.seen = typeof leak + '/' + typeof kept;", bundle)
    assert _sets(first, "kept") == ["https://cdn.test/b.m3u8"]
    assert _sets(second, "seen") == ["undefined/undefined"]


def test_node_style_global_alias():
    run = host.run('global["xyz"] = atob(document.getElementById("xyz").content);', bundle)
    assert _sets(run, "xyz") == ["playlist"]


def test_environment_is_single_use():
    env = SandboxEnvironment(bundle, settings)
    env.run("1 + 1", 1000)
    with pytest.raises(RuntimeError):
        env.run("1 + 1", 1000)


def test_inherited_to_json_cannot_reshape_the_dump():
    run = host.run("""
        Object.prototype.toJSON = function () { return 1; };
        Array.prototype.toJSON = function () { return "[]"; };
        window["xyz"] = atob(document.getElementById("xyz").content);
    """, bundle)
    assert run.status is SandboxStatus.COMPLETED
    assert _sets(run, "xyz") == ["playlist"]


def test_rewritten_prototypes_do_not_blind_the_log():
    run = host.run("""
        Array.prototype.push = function () {};
        Array.prototype.forEach = function () {};
        String.prototype.slice = function () { return ""; };
        String.prototype.replace = function () { return "!!"; };
        String.prototype.toLowerCase = function () { return "?"; };
        RegExp.prototype.test = function () { return true; };
        Object.defineProperty(Array.prototype, "0", {set: function () {}, configurable: true});
        Object.defineProperty(Object.prototype, "get", {value: function () {}, configurable: true});
        window["xyz"] = atob(document.getElementById("xyz").content);
        console.log("after");
    """, bundle)
    assert run.status is SandboxStatus.COMPLETED
    assert _sets(run, "xyz") == ["playlist"]
    assert [e.value for e in run.trap_log.of_kind(TrapKind.DECODE)] == ["playlist"]
    assert run.trap_log.of_kind(TrapKind.CONSOLE)[0].args == ("after",)


def test_config_is_not_reachable_from_the_snippet():
    run = host.run("window.seen = typeof __hcConfig;", bundle)
    assert _sets(run, "seen") == ["undefined"]


def test_isolates_are_released_after_every_outcome():
    hostile = [
        "Object.prototype.toJSON = function () { return 1; };",
        "while (true) {}",
        "throw new Error('boom');",
        "window.x = ;",
    ]
    for snippet in hostile * 3:
        host.run(snippet, bundle, timeout_ms=100)
    run = host.run('window["xyz"] = atob(document.getElementById("xyz").content);', bundle)
    assert run.status is SandboxStatus.COMPLETED
    assert _sets(run, "xyz") == ["playlist"]
