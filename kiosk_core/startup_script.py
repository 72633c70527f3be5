"""JavaScript injected into every leaf surface at load time."""
from __future__ import annotations

import json

from kiosk_core.display_tree import Leaf

# Name of the page-level function the surface provides for outbound messages.
POST_FUNCTION = "__kioskPost"
CONSOLE_MESSAGE_TYPE = "Console"

_CONSOLE_SHIM = """(function () {
  if (window.__kioskConsoleShim) { return; }
  window.__kioskConsoleShim = true;
  var levels = { log: "info", debug: "debug", info: "info", warn: "warn", error: "error" };
  function describe(value) {
    if (typeof value === "string") { return value; }
    if (value instanceof Error) { return value.name + ": " + value.message; }
    try { return JSON.stringify(value); } catch (e) { return String(value); }
  }
  function post(text) {
    var target = window[%(post)s];
    if (typeof target === "function") {
      try { target(text); } catch (e) { /* best effort */ }
    } else {
      (window.__kioskPending = window.__kioskPending || []).push(text);
    }
  }
  Object.keys(levels).forEach(function (name) {
    var original = console[name] ? console[name].bind(console) : function () {};
    console[name] = function () {
      var args = Array.prototype.slice.call(arguments);
      try {
        var entry = { level: levels[name], message: args.length ? describe(args[0]) : "" };
        if (args.length > 1) {
          entry.data = { args: args.slice(1).map(describe) };
        }
        if (entry.message) {
          post(JSON.stringify({ type: %(kind)s, data: entry }));
        }
      } catch (e) { /* never break the page's console */ }
      return original.apply(null, args);
    };
  });
})();"""


def console_shim() -> str:
    return _CONSOLE_SHIM % {
        "post": json.dumps(POST_FUNCTION),
        "kind": json.dumps(CONSOLE_MESSAGE_TYPE),
    }


def build_startup_script(leaf: Leaf) -> str:
    """Console shim first so output from the leaf's own script is captured too."""
    parts = [console_shim()]
    if leaf.on_load.strip():
        parts.append(
            "(function () {\n"
            "  try {\n"
            f"{leaf.on_load}\n"
            "  } catch (e) { console.error(\"onLoad script failed\", e); }\n"
            "})();"
        )
    return "\n".join(parts)
