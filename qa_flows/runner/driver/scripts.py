"""Page-side JavaScript used by the CDP driver.

Every script is a self-contained expression built around a shared prelude that
resolves selectors:

- plain CSS, searched through open shadow roots
- `text=...` (trimmed, case-insensitive substring of an element's own text)
- `xpath=...` or anything starting with `//`
"""

from __future__ import annotations

import json
from typing import Any

SELECTOR_PRELUDE = r"""
const __qaCollectRoots = (start) => {
  const roots = [];
  const queue = [start];
  const MAX_ROOTS = 60;
  const MAX_SCAN = 4000;
  while (queue.length && roots.length < MAX_ROOTS) {
    const root = queue.shift();
    if (!root || roots.includes(root)) continue;
    roots.push(root);
    if (!root.querySelectorAll) continue;
    let scanned = 0;
    for (const el of root.querySelectorAll('*')) {
      scanned += 1;
      if (scanned > MAX_SCAN) break;
      if (el && el.shadowRoot) queue.push(el.shadowRoot);
    }
  }
  return roots;
};

const __qaIsVisible = (el) => {
  try {
    if (!el || !el.getBoundingClientRect) return false;
    const r = el.getBoundingClientRect();
    if (r.width <= 0 || r.height <= 0) return false;
    const style = globalThis.getComputedStyle ? globalThis.getComputedStyle(el) : null;
    if (!style) return true;
    if (style.display === 'none' || style.visibility === 'hidden') return false;
    if (Number(style.opacity || '1') === 0) return false;
    return true;
  } catch (e) {
    return false;
  }
};

const __qaResolveAll = (selector) => {
  const sel = String(selector || '');
  if (sel.startsWith('xpath=') || sel.startsWith('//')) {
    const expr = sel.startsWith('xpath=') ? sel.slice(6) : sel;
    const snap = document.evaluate(expr, document, null, XPathResult.ORDERED_NODE_SNAPSHOT_TYPE, null);
    const out = [];
    for (let i = 0; i < snap.snapshotLength; i++) out.push(snap.snapshotItem(i));
    return out;
  }
  if (sel.startsWith('text=')) {
    let needle = sel.slice(5).trim();
    if (needle.length > 1 && /^(['"]).*\1$/.test(needle)) needle = needle.slice(1, -1);
    needle = needle.replace(/\s+/g, ' ').toLowerCase();
    const out = [];
    for (const root of __qaCollectRoots(document)) {
      for (const el of root.querySelectorAll('body *')) {
        if (['SCRIPT', 'STYLE', 'NOSCRIPT'].includes(el.tagName)) continue;
        const own = Array.from(el.childNodes)
          .filter((n) => n.nodeType === Node.TEXT_NODE)
          .map((n) => n.textContent)
          .join(' ');
        const hay = (own.trim() ? own : (el.children.length ? '' : el.textContent || '') + (el.value || ''))
          .replace(/\s+/g, ' ')
          .trim()
          .toLowerCase();
        if (hay && hay.includes(needle)) out.push(el);
      }
    }
    return out;
  }
  const out = [];
  for (const root of __qaCollectRoots(document)) {
    out.push(...Array.from(root.querySelectorAll(sel)));
  }
  return out;
};

const __qaResolve = (selector) => __qaResolveAll(selector)[0] || null;

const __qaRequire = (selector) => {
  const el = __qaResolve(selector);
  if (!el) throw new Error('No element matches selector: ' + selector);
  return el;
};
"""


def _wrap(body: str) -> str:
    return f"(() => {{\n{SELECTOR_PRELUDE}\n{body}\n}})()"


def _js(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)


def selector_state(selector: str) -> str:
    """{count, visible} for the first match."""
    return _wrap(
        f"""
  const nodes = __qaResolveAll({_js(selector)});
  return {{ count: nodes.length, visible: nodes.length > 0 && __qaIsVisible(nodes[0]) }};
"""
    )


def element_center(selector: str) -> str:
    """Scroll the first match into view and return its viewport center, or null if not visible."""
    return _wrap(
        f"""
  const el = __qaResolve({_js(selector)});
  if (!el) return null;
  el.scrollIntoView({{ block: 'center', inline: 'center' }});
  const r = el.getBoundingClientRect();
  if (!__qaIsVisible(el)) return null;
  return {{ x: r.left + r.width / 2, y: r.top + r.height / 2 }};
"""
    )


def focus(selector: str) -> str:
    return _wrap(f"const el = __qaRequire({_js(selector)}); el.focus(); return true;")


def blur(selector: str) -> str:
    return _wrap(f"const el = __qaRequire({_js(selector)}); el.blur(); return true;")


def fill(selector: str, value: str) -> str:
    """Replace the field value through the native setter so framework bindings observe it."""
    return _wrap(
        f"""
  const el = __qaRequire({_js(selector)});
  const value = {_js(value)};
  el.focus();
  if (el.isContentEditable) {{
    el.textContent = value;
  }} else {{
    const proto = Object.getPrototypeOf(el);
    const desc = proto ? Object.getOwnPropertyDescriptor(proto, 'value') : null;
    if (desc && typeof desc.set === 'function') {{
      desc.set.call(el, value);
    }} else {{
      el.value = value;
    }}
  }}
  el.dispatchEvent(new Event('input', {{ bubbles: true }}));
  el.dispatchEvent(new Event('change', {{ bubbles: true }}));
  return true;
"""
    )


def clear_for_typing(selector: str) -> str:
    return _wrap(
        f"""
  const el = __qaRequire({_js(selector)});
  el.focus();
  if (typeof el.select === 'function') el.select();
  return true;
"""
    )


def set_checked(selector: str, checked: bool) -> str:
    return _wrap(
        f"""
  const el = __qaRequire({_js(selector)});
  const want = {_js(bool(checked))};
  if (!('checked' in el)) throw new Error('Element is not a checkbox or radio: ' + {_js(selector)});
  if (el.checked !== want) el.click();
  if (el.checked !== want) throw new Error('Clicking the element did not change its checked state');
  return el.checked;
"""
    )


def select_options(selector: str, values: list[Any]) -> str:
    """Select options by value, label or `{value|label|index}`; returns the selected values."""
    return _wrap(
        f"""
  const el = __qaRequire({_js(selector)});
  if (el.tagName !== 'SELECT') throw new Error('Element is not a <select>: ' + {_js(selector)});
  const wanted = {_js(values)};
  const options = Array.from(el.options);
  const matches = (opt, w) => {{
    if (w && typeof w === 'object') {{
      if (w.value !== undefined) return opt.value === String(w.value);
      if (w.label !== undefined) return opt.label === String(w.label);
      if (w.index !== undefined) return opt.index === Number(w.index);
      return false;
    }}
    return opt.value === String(w) || opt.label === String(w);
  }};
  const picked = options.filter((opt) => wanted.some((w) => matches(opt, w)));
  if (wanted.length && !picked.length) throw new Error('No options matched ' + JSON.stringify(wanted));
  for (const opt of options) opt.selected = picked.includes(opt) && (el.multiple || opt === picked[0]);
  el.dispatchEvent(new Event('input', {{ bubbles: true }}));
  el.dispatchEvent(new Event('change', {{ bubbles: true }}));
  return options.filter((o) => o.selected).map((o) => o.value);
"""
    )


_EVENT_CLASSES = {
    "click": "MouseEvent",
    "dblclick": "MouseEvent",
    "mousedown": "MouseEvent",
    "mouseup": "MouseEvent",
    "mouseover": "MouseEvent",
    "mouseout": "MouseEvent",
    "keydown": "KeyboardEvent",
    "keyup": "KeyboardEvent",
    "keypress": "KeyboardEvent",
    "focus": "FocusEvent",
    "blur": "FocusEvent",
    "input": "InputEvent",
}


def dispatch_event(selector: str, event_type: str, event_init: dict[str, Any] | None) -> str:
    init = {"bubbles": True, "cancelable": True, "composed": True, **(event_init or {})}
    cls = _EVENT_CLASSES.get(event_type, "Event")
    return _wrap(
        f"""
  const el = __qaRequire({_js(selector)});
  const Ctor = globalThis[{_js(cls)}] || Event;
  el.dispatchEvent(new Ctor({_js(event_type)}, {_js(init)}));
  return true;
"""
    )


def text_content(selector: str) -> str:
    return _wrap(f"const el = __qaResolve({_js(selector)}); return el ? el.textContent : null;")


def input_value(selector: str) -> str:
    return _wrap(
        f"""
  const el = __qaRequire({_js(selector)});
  if (!('value' in el)) throw new Error('Element is not an input, textarea or select: ' + {_js(selector)});
  return String(el.value);
"""
    )


def get_attribute(selector: str, name: str) -> str:
    return _wrap(f"const el = __qaRequire({_js(selector)}); return el.getAttribute({_js(name)});")


def count(selector: str) -> str:
    return _wrap(f"return __qaResolveAll({_js(selector)}).length;")


def file_input_marker(selector: str, marker: str) -> str:
    """Tag the first match so DOM.querySelector can find it for DOM.setFileInputFiles."""
    return _wrap(
        f"""
  const el = __qaRequire({_js(selector)});
  if (el.tagName !== 'INPUT' || el.type !== 'file') throw new Error('Element is not a file input: ' + {_js(selector)});
  el.setAttribute('data-qa-file-target', {_js(marker)});
  return true;
"""
    )


CONTENT = """
(() => {
  const dt = document.doctype;
  const doctype = dt ? '<!DOCTYPE ' + dt.name + (dt.publicId ? ' PUBLIC "' + dt.publicId + '"' : '')
    + (dt.systemId ? ' "' + dt.systemId + '"' : '') + '>\\n' : '';
  return doctype + document.documentElement.outerHTML;
})()
"""


def set_content(html: str) -> str:
    return f"(() => {{ document.open(); document.write({_js(html)}); document.close(); return true; }})()"


READY_STATE = "document.readyState"

NETWORK_IDLE = """
(() => {
  if (!window.__qaNetworkIdle) {
    window.__qaNetworkIdle = { lastActivity: Date.now() };
    const observer = new PerformanceObserver(() => {
      window.__qaNetworkIdle.lastActivity = Date.now();
    });
    observer.observe({ entryTypes: ['resource'] });
  }
  return document.readyState === 'complete' && Date.now() - window.__qaNetworkIdle.lastActivity > 500;
})()
"""


def call_function(page_function: str, arg: Any = None) -> str:
    """Expression that evaluates `page_function`; a function source is called with `arg`."""
    src = str(page_function).strip()
    is_function = src.startswith(("function", "async ")) or "=>" in src.split("\n", 1)[0]
    if is_function:
        return f"({src})({_js(arg)})"
    return src


__all__ = [
    "CONTENT",
    "NETWORK_IDLE",
    "READY_STATE",
    "SELECTOR_PRELUDE",
    "blur",
    "call_function",
    "clear_for_typing",
    "count",
    "dispatch_event",
    "element_center",
    "file_input_marker",
    "fill",
    "focus",
    "get_attribute",
    "input_value",
    "select_options",
    "selector_state",
    "set_checked",
    "set_content",
    "text_content",
]
