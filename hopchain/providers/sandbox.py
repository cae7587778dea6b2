"""
Sandbox host for untrusted decoder snippets.

Each run gets a fresh embedded V8 isolate (mini-racer) with no network,
filesystem or process access. A JS prelude builds a trapped ``window``:
every write, delete, define and missing-name lookup is appended to a log,
and the snippet executes inside ``with (window) { ... }`` so bare
identifiers go through the same traps.

Only the final log is trusted, never the snippet's own state. The prelude
captures the builtins it needs and serializes the log itself, so a
snippet that rebinds JSON, String or Array cannot corrupt the dump.
"""
from __future__ import annotations
import json
import logging
import time
from typing import Optional
from urllib.parse import urlparse

from py_mini_racer import JSEvalException, JSTimeoutException, MiniRacer

from ..core.config import Settings, get_settings
from .base import PayloadBundle, SandboxRun, SandboxStatus, TrapEntry, TrapKind, TrapLog

log = logging.getLogger("hopchain.sandbox")

VALUE_CLIP = 4096
BLOCKED_CAPABILITIES = (
    "fetch", "XMLHttpRequest", "WebSocket", "EventSource", "importScripts",
    "require", "process", "Deno", "Bun",
)

# Installs __hcWindow (the trapped window proxy) and __hcDump (log
# serializer) as non-writable globals. Reads its inputs from __hcConfig, a
# parameter of the wrapper built in SandboxEnvironment, never a global.
PRELUDE = r"""
(function (root, cfg) {
  "use strict";
  var apply = Reflect.apply, rGet = Reflect.get, rSet = Reflect.set,
      rHas = Reflect.has, rDefine = Reflect.defineProperty,
      rDelete = Reflect.deleteProperty, ownNames = Object.getOwnPropertyNames,
      defineProp = Object.defineProperty, objCreate = Object.create,
      stringify = JSON.stringify, toStr = String, fromCharCode = String.fromCharCode,
      isArray = Array.isArray, ErrorCtor = Error, ProxyCtor = Proxy,
      strSlice = String.prototype.slice, strIndexOf = String.prototype.indexOf,
      strLower = String.prototype.toLowerCase, strUpper = String.prototype.toUpperCase,
      strCharCode = String.prototype.charCodeAt;

  // the snippet may rewrite any prototype, so the prelude only calls
  // methods captured above and stores its own state on null-prototype objects
  function slice(s, from, to) { return apply(strSlice, s, [from, to]); }
  function indexOf(s, part) { return apply(strIndexOf, s, [part]); }
  function lower(s) { return apply(strLower, toStr(s), []); }
  function upper(s) { return apply(strUpper, toStr(s), []); }
  function charCode(s, i) { return apply(strCharCode, s, [i]); }
  function bare() { return objCreate(null); }
  function push(list, value) {
    var desc = bare();
    desc.value = value; desc.writable = true; desc.enumerable = true; desc.configurable = true;
    rDefine(list, list.length, desc);
  }
  function traps(spec) {
    var handler = bare(), names = ownNames(spec);
    for (var i = 0; i < names.length; i++) handler[names[i]] = spec[names[i]];
    return handler;
  }
  function each(list, fn) {
    for (var i = 0; i < list.length; i++) fn(list[i]);
  }

  var entries = bare(), count = 0, dropped = 0, seenGets = bare(),
      seenLookups = bare(), scalarSets = bare();

  function clip(v) {
    return v.length > cfg.clip ? slice(v, 0, cfg.clip) : v;
  }
  function describe(v) {
    var t = typeof v;
    if (t === "string") return clip(v);
    if (t === "number" || t === "boolean" || t === "bigint") return toStr(v);
    return null;
  }
  function typeName(v) {
    if (v === null) return "null";
    if (isArray(v)) return "array";
    return typeof v;
  }
  function argText(v) {
    var t = typeof v;
    if (t === "string") return clip(v);
    if (v === null || t === "undefined" || t === "number" || t === "boolean") return toStr(v);
    if (t === "function") return "[function]";
    return "[" + typeName(v) + "]";
  }
  function keyName(k) {
    return typeof k === "symbol" ? "@@symbol" : toStr(k);
  }
  function quote(v) {
    return v === null || v === undefined ? "null" : stringify(toStr(v));
  }
  function record(op, name, args, value, scope) {
    if (count >= cfg.limit) { dropped++; return; }
    var list = "";
    for (var i = 0; args && i < args.length; i++) list += (i ? "," : "") + quote(argText(args[i]));
    var entry = bare();
    entry.op = op;
    entry.name = name == null ? null : keyName(name);
    entry.args = "[" + list + "]";
    entry.type = typeName(value);
    entry.value = describe(value);
    entry.scope = scope || "window";
    entries[count++] = entry;
  }
  function recordSet(name, value, scope) {
    var key = keyName(name), t = typeof value;
    if (t === "number" || t === "boolean" || t === "undefined" || value === null) {
      // counters and flags: first write per name only
      if (scalarSets[key]) return;
      scalarSets[key] = true;
    }
    var last = count ? entries[count - 1] : undefined;
    if (last && last.op === "set" && last.name === key && last.scope === (scope || "window")) {
      last.type = typeName(value);
      last.value = describe(value);
      return;
    }
    record("set", key, [], value, scope);
  }
  function errText(e) {
    if (e && typeof e === "object") {
      try { return toStr(e.name) + ": " + toStr(e.message); } catch (inner) { return "[error]"; }
    }
    return argText(e);
  }

  // base64 the way browsers do it (latin-1 strings only)
  var B64 = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/";
  var B64_INDEX = bare();
  for (var d = 0; d < B64.length; d++) B64_INDEX[B64[d]] = d;
  var B64_SPACE = bare();
  each(["\t", "\n", "\f", "\r", " "], function (c) { B64_SPACE[c] = true; });

  function atob(input) {
    var raw = toStr(input), s = "";
    for (var i = 0; i < raw.length; i++) {
      if (!B64_SPACE[raw[i]]) s += raw[i];
    }
    if (s.length % 4 === 0 && s.length && s[s.length - 1] === "=") {
      s = slice(s, 0, s[s.length - 2] === "=" ? s.length - 2 : s.length - 1);
    }
    var valid = s.length % 4 !== 1;
    for (var j = 0; valid && j < s.length; j++) {
      if (B64_INDEX[s[j]] === undefined) valid = false;
    }
    if (!valid) {
      record("decode", "atob", [input], null);
      throw new ErrorCtor("InvalidCharacterError: atob input is not valid base64");
    }
    var out = "", buf = 0, bits = 0;
    for (var k = 0; k < s.length; k++) {
      buf = (buf << 6) | B64_INDEX[s[k]];
      bits += 6;
      if (bits >= 8) {
        bits -= 8;
        out += fromCharCode((buf >> bits) & 0xff);
        buf &= (1 << bits) - 1;
      }
    }
    record("decode", "atob", [input], out);
    return out;
  }
  function btoa(input) {
    var s = toStr(input), out = "";
    for (var i = 0; i < s.length; i += 3) {
      var a = charCode(s, i), b = charCode(s, i + 1), c = charCode(s, i + 2);
      if (a > 255 || b > 255 || c > 255) {
        record("encode", "btoa", [input], null);
        throw new ErrorCtor("InvalidCharacterError: btoa input is not latin-1");
      }
      var n = (a << 16) | ((b || 0) << 8) | (c || 0);
      out += B64[(n >> 18) & 63] + B64[(n >> 12) & 63]
           + (i + 1 < s.length ? B64[(n >> 6) & 63] : "=")
           + (i + 2 < s.length ? B64[n & 63] : "=");
    }
    record("encode", "btoa", [input], out);
    return out;
  }

  // timers fire synchronously, nested up to cfg.timer_depth
  var timerDepth = 0, timerSeq = 0;
  function timer(kind) {
    return function (fn) {
      var args = [];
      for (var i = 2; i < arguments.length; i++) push(args, arguments[i]);
      timerSeq++;
      if (typeof fn !== "function") {
        record("timer", kind, [fn], null);
        return timerSeq;
      }
      if (timerDepth >= cfg.timer_depth) {
        record("timer", kind, ["dropped"], null);
        return timerSeq;
      }
      record("timer", kind, [], null);
      timerDepth++;
      try {
        apply(fn, win, args);
      } catch (e) {
        record("error", kind, [errText(e)], null);
      } finally {
        timerDepth--;
      }
      return timerSeq;
    };
  }
  function noop() {}

  function blocked(name) {
    var stub = function () {
      record("blocked", name, arguments, null);
      throw new ErrorCtor(name + " is not available in the sandbox");
    };
    return stub;
  }

  function navigate(name, value) {
    record("navigate", name, [], toStr(value));
  }
  var location = {};
  function locationField(field) {
    defineProp(location, field, {
      enumerable: true,
      get: function () { return cfg.location[field]; },
      set: function (v) { navigate("location." + field, v); }
    });
  }
  each(["href", "protocol", "host", "hostname", "port", "origin", "pathname", "search", "hash"],
       locationField);
  location.assign = function (u) { navigate("location.assign", u); };
  location.replace = function (u) { navigate("location.replace", u); };
  location.reload = noop;
  location.toString = function () { return cfg.location.href; };

  function element(tag, id, text) {
    var tagLower = lower(tag);
    var el = {
      tagName: upper(tag), id: id || "", children: [], style: {},
      attributes: bare(), dataset: {},
      getAttribute: function (n) { return n === "id" ? el.id : (el.attributes[n] === undefined ? null : el.attributes[n]); },
      setAttribute: function (n, v) {
        el.attributes[n] = toStr(v);
        record("write", tagLower + "." + n, [], toStr(v), "document");
      },
      appendChild: function (c) { push(el.children, c); return c; },
      removeChild: function (c) { return c; },
      remove: noop, addEventListener: noop, removeEventListener: noop,
      querySelector: function () { return null; },
      querySelectorAll: function () { return []; }
    };
    if (text !== undefined) {
      each(["textContent", "innerHTML", "innerText", "content", "value", "nodeValue", "outerText"],
           function (f) { el[f] = text; });
      el.firstChild = {nodeValue: text, textContent: text, data: text};
      el.childNodes = [el.firstChild];
    }
    return new ProxyCtor(el, traps({
      set: function (t, k, v) {
        if (k === "src" || k === "href" || k === "innerHTML" || k === "data") {
          record("write", tagLower + "." + keyName(k), [], v, "document");
        }
        return rSet(t, k, v);
      }
    }));
  }
  var payloadElement = element("div", cfg.identifier, cfg.payload);
  function matchesPayload(selector) {
    var s = toStr(selector);
    return s === "#" + cfg.identifier || indexOf(s, 'id="' + cfg.identifier + '"') !== -1
        || indexOf(s, "id='" + cfg.identifier + "'") !== -1 || indexOf(s, "id=" + cfg.identifier + "]") !== -1;
  }
  var bodyElement = element("body"), headElement = element("head");
  var cookie = "";
  var document = {
    readyState: "complete",
    body: bodyElement, head: headElement, documentElement: element("html"),
    location: location, referrer: cfg.location.href, title: "",
    getElementById: function (id) {
      var hit = toStr(id) === cfg.identifier;
      record("get", "document.getElementById", [id], hit ? cfg.payload : null, "document");
      return hit ? payloadElement : null;
    },
    querySelector: function (sel) {
      var hit = matchesPayload(sel);
      record("get", "document.querySelector", [sel], hit ? cfg.payload : null, "document");
      return hit ? payloadElement : null;
    },
    querySelectorAll: function (sel) { return matchesPayload(sel) ? [payloadElement] : []; },
    getElementsByTagName: function (tag) {
      tag = lower(tag);
      return tag === "body" ? [bodyElement] : tag === "head" ? [headElement] : [];
    },
    getElementsByClassName: function () { return []; },
    createElement: function (tag) {
      record("get", "document.createElement", [tag], null, "document");
      return element(tag);
    },
    createTextNode: function (t) { return {nodeValue: t, textContent: t}; },
    write: function () {
      var html = "";
      for (var i = 0; i < arguments.length; i++) html += toStr(arguments[i]);
      record("write", "document.write", [], html, "document");
    },
    writeln: function () { apply(document.write, null, arguments); },
    addEventListener: function (type, fn) {
      if (type === "DOMContentLoaded" || type === "load" || type === "readystatechange") {
        fire("document." + type, fn);
      }
    },
    removeEventListener: noop
  };
  defineProp(document, "cookie", {
    get: function () { return cookie; },
    set: function (v) { cookie = toStr(v); record("set", "cookie", [], cookie, "document"); }
  });
  function fire(name, fn) {
    if (typeof fn !== "function") return;
    try { apply(fn, win, [{type: name}]); }
    catch (e) { record("error", name, [errText(e)], null); }
  }

  var consoleObj = {};
  each(["log", "info", "warn", "error", "debug", "trace", "dir", "table"], function (m) {
    consoleObj[m] = function () { record("console", m, arguments, null); };
  });

  function jq(arg) {
    var wrapper = {
      ready: function (fn) { fire("jQuery.ready", fn); return wrapper; },
      on: function (type, fn) { if (type === "load") fire("jQuery.load", fn); return wrapper; },
      text: function () { return matchesPayload(arg) ? cfg.payload : ""; },
      html: function () { return matchesPayload(arg) ? cfg.payload : ""; },
      val: function () { return matchesPayload(arg) ? cfg.payload : ""; },
      attr: function () { return undefined; },
      length: matchesPayload(arg) ? 1 : 0
    };
    if (typeof arg === "function") fire("jQuery.ready", arg);
    return wrapper;
  }
  jq.ajax = blocked("jQuery.ajax");
  jq.get = blocked("jQuery.get");
  jq.getJSON = blocked("jQuery.getJSON");
  jq.getScript = blocked("jQuery.getScript");

  var navigator = {
    userAgent: cfg.user_agent, language: "en-US", languages: ["en-US", "en"],
    platform: "Win32", vendor: "Google Inc.", cookieEnabled: true, webdriver: false,
    onLine: true, hardwareConcurrency: 8
  };

  var store = Object.create(null);
  var surface = {
    document: document, location: location, navigator: navigator,
    console: consoleObj, atob: atob, btoa: btoa,
    setTimeout: timer("setTimeout"), setInterval: timer("setInterval"),
    requestAnimationFrame: timer("requestAnimationFrame"),
    queueMicrotask: timer("queueMicrotask"), setImmediate: timer("setImmediate"),
    clearTimeout: noop, clearInterval: noop, cancelAnimationFrame: noop,
    addEventListener: function (type, fn) {
      if (type === "load" || type === "DOMContentLoaded") fire("window." + type, fn);
    },
    removeEventListener: noop, postMessage: noop,
    $: jq, jQuery: jq,
    localStorage: {getItem: function () { return null; }, setItem: noop, removeItem: noop},
    sessionStorage: {getItem: function () { return null; }, setItem: noop, removeItem: noop},
    innerWidth: 1920, innerHeight: 1080, devicePixelRatio: 1,
    screen: {width: 1920, height: 1080, availWidth: 1920, availHeight: 1040}
  };
  for (var b = 0; b < cfg.blocked.length; b++) surface[cfg.blocked[b]] = blocked(cfg.blocked[b]);

  var win = new ProxyCtor(store, traps({
    has: function (t, k) {
      return typeof k === "string" ? true : rHas(t, k);
    },
    get: function (t, k) {
      if (typeof k === "symbol") return rGet(t, k);
      if (rHas(t, k)) {
        if (!seenGets[k]) { seenGets[k] = true; record("get", k, [], t[k]); }
        return rGet(t, k);
      }
      if (rHas(surface, k)) return surface[k];
      if (rHas(root, k)) return root[k];
      if (!seenLookups[k]) { seenLookups[k] = true; record("lookup", k, [], undefined); }
      return undefined;
    },
    set: function (t, k, v) {
      if (k === "location") { navigate("location", v); return true; }
      recordSet(k, v);
      return rSet(t, k, v);
    },
    deleteProperty: function (t, k) {
      record("delete", k, [], undefined);
      return rDelete(t, k);
    },
    defineProperty: function (t, k, desc) {
      record("define", k, [], desc && "value" in desc ? desc.value : undefined);
      return rDefine(t, k, desc);
    }
  }));
  each(["window", "self", "top", "parent", "frames", "globalThis", "global"], function (n) {
    surface[n] = win;
  });
  // code compiled in the global scope (Function, indirect eval) sees the same surface
  for (var name in surface) {
    if (name === "globalThis") continue;
    try {
      defineProp(root, name, {value: surface[name], writable: true, configurable: true});
    } catch (e) {
      // non-configurable host global; the window proxy still shadows it
    }
  }

  var before = bare();
  function snapshot() {
    var names = ownNames(root);
    for (var i = 0; i < names.length; i++) before[names[i]] = true;
    before.__hcDump = true;
    before.__hcWindow = true;
  }

  function dump() {
    var names = ownNames(root);
    for (var i = 0; i < names.length; i++) {
      var n = names[i];
      if (before[n]) continue;
      var v;
      try { v = root[n]; } catch (e) { continue; }
      if (v === undefined || typeof v === "function") continue;
      record("set", n, [], v, "global");
    }
    // hand-built JSON: stringify only ever sees primitive strings, so an
    // inherited toJSON cannot reshape the dump
    var out = "";
    for (var j = 0; j < count; j++) {
      var e = entries[j];
      out += (j ? "," : "") + '{"op":' + quote(e.op) + ',"name":' + quote(e.name)
           + ',"args":' + e.args + ',"type":' + quote(e.type)
           + ',"value":' + quote(e.value) + ',"scope":' + quote(e.scope) + "}";
    }
    return '{"entries":[' + out + '],"dropped":' + toStr(dropped) + "}";
  }

  defineProp(root, "__hcWindow", {value: win, writable: false, configurable: false});
  defineProp(root, "__hcDump", {value: dump, writable: false, configurable: false});
  snapshot();
})(globalThis, __hcConfig);
"""


def _location(page_url: Optional[str]) -> dict:
    parsed = urlparse(page_url or "about:blank")
    origin = f"{parsed.scheme}://{parsed.netloc}" if parsed.netloc else "null"
    return {
        "href": page_url or "about:blank",
        "protocol": f"{parsed.scheme}:",
        "host": parsed.netloc,
        "hostname": parsed.hostname or "",
        "port": str(parsed.port) if parsed.port else "",
        "origin": origin,
        "pathname": parsed.path or "/",
        "search": f"?{parsed.query}" if parsed.query else "",
        "hash": f"#{parsed.fragment}" if parsed.fragment else "",
    }


class SandboxEnvironment:
    """A single-use V8 isolate with the trapped browser surface installed."""

    def __init__(self, bundle: PayloadBundle, settings: Settings):
        self.bundle = bundle
        self.settings = settings
        self._used = False

    def _config(self) -> dict:
        return {
            "identifier": self.bundle.identifier,
            "payload": self.bundle.payload,
            "location": _location(self.bundle.page_url),
            "user_agent": self.settings.user_agent,
            "limit": self.settings.trap_log_limit,
            "timer_depth": self.settings.timer_depth,
            "clip": VALUE_CLIP,
            "blocked": list(BLOCKED_CAPABILITIES),
        }

    def run(self, snippet: str, timeout_ms: int) -> SandboxRun:
        if self._used:
            raise RuntimeError("SandboxEnvironment is single-use")
        self._used = True

        status, error, completion = SandboxStatus.COMPLETED, None, None
        with MiniRacer() as ctx:
            ctx.eval(f"(function (__hcConfig) {{\n{PRELUDE}\n}})({json.dumps(self._config())});")
            started = time.monotonic()
            try:
                completion = ctx.eval(
                    f"with (__hcWindow) {{\n{snippet}\n}}",
                    timeout=timeout_ms,
                    max_memory=self.settings.sandbox_max_memory,
                )
            except JSTimeoutException:
                status, error = SandboxStatus.TIMED_OUT, f"exceeded {timeout_ms} ms"
            except JSEvalException as exc:
                first_line = (str(exc).strip().splitlines() or ["error"])[0]
                status, error = SandboxStatus.THREW, first_line[:300]
            elapsed = (time.monotonic() - started) * 1000
            trap_log = self._collect(ctx)

        if isinstance(completion, str):
            trap_log.append(TrapEntry(kind=TrapKind.RETURN, value_type="string",
                                      value=completion[:VALUE_CLIP], scope="script"))
        if error:
            trap_log.append(TrapEntry(kind=TrapKind.ERROR, name=status.value, args=(error,)))
        return SandboxRun(status=status, trap_log=trap_log, error=error, elapsed_ms=elapsed)

    def _collect(self, ctx: MiniRacer) -> TrapLog:
        try:
            raw = ctx.eval("__hcDump()", timeout=1000)
        except Exception as exc:
            # a terminated isolate may refuse further evals
            log.warning(f"trap log unreadable after run: {type(exc).__name__}: {exc}")
            return TrapLog()
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            log.warning("trap log dump was not valid JSON")
            return TrapLog()
        if not isinstance(data, dict) or not isinstance(data.get("entries"), list):
            log.warning(f"trap log dump has the wrong shape: {type(data).__name__}")
            return TrapLog()
        dropped = data.get("dropped")
        entries = (TrapEntry.from_dict(e) for e in data["entries"] if isinstance(e, dict))
        return TrapLog((e for e in entries if e is not None),
                       dropped=dropped if isinstance(dropped, int) else 0)


class SandboxHost:
    """Runs decoder snippets, one disposable environment per call."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()

    def run(self, snippet: str, bundle: PayloadBundle, timeout_ms: int | None = None) -> SandboxRun:
        timeout_ms = timeout_ms or self.settings.sandbox_timeout_ms
        env = SandboxEnvironment(bundle, self.settings)
        result = env.run(snippet, timeout_ms)
        log.debug(f"[{bundle.identifier}] sandbox {result.status.value} in {result.elapsed_ms:.0f} ms, "
                  f"{len(result.trap_log)} entries")
        return result
