"""
In-page scripts.

Everything the crawler keeps inside the page lives under one versioned
namespace, ``window.__heimdall_v1``:

- ``elementsWithClickEvents``: every target a click listener was added to
- ``clickableOrAddedMutationDomElements``: elements added, or whose ``href``
  or ``onclick`` changed, while recording
- ``allAttributeMutationDomElements``: targets of any attribute mutation on
  ``document.body`` while recording
- ``recording``: whether a mutation recording session is active

The startup script is installed with ``BrowserContext.add_init_script`` so
it runs before any page script. The other scripts are passed to
``Page.evaluate`` and friends as arrow functions.
"""

import json
from typing import Optional


NAMESPACE = "__heimdall_v1"

_STARTUP_SCRIPT = """
(() => {
  if (window.__heimdall_v1) {
    return;
  }
  const state = window.__heimdall_v1 = {
    elementsWithClickEvents: [],
    clickableOrAddedMutationDomElements: [],
    allAttributeMutationDomElements: [],
    recording: false,
    observers: [],
  };
  const originalAddEventListener = EventTarget.prototype.addEventListener;
  EventTarget.prototype.addEventListener = function (type, listener, options) {
    if (type === 'click' && listener) {
      state.elementsWithClickEvents.push(this);
      if (state.recording) {
        state.clickableOrAddedMutationDomElements.push(this);
      }
    }
    return originalAddEventListener.call(this, type, listener, options);
  };
})();
"""

_CONSTANT_DATE_SHIM = """
(() => {
  const NativeDate = Date;
  const fixedTime = NativeDate.parse(%s);
  function ConstantDate(...args) {
    if (!new.target) {
      return new NativeDate(fixedTime).toString();
    }
    if (args.length === 0) {
      return new NativeDate(fixedTime);
    }
    return new NativeDate(...args);
  }
  ConstantDate.prototype = NativeDate.prototype;
  ConstantDate.now = () => fixedTime;
  ConstantDate.parse = NativeDate.parse;
  ConstantDate.UTC = NativeDate.UTC;
  window.Date = ConstantDate;
})();
"""

_CONSTANT_RANDOM_SHIM = """
Math.random = () => %s;
"""

MUTATION_OBSERVER_SCRIPT = """
() => {
  const state = window.__heimdall_v1;
  if (!state || !document.body) {
    return false;
  }
  state.observers.forEach((observer) => observer.disconnect());
  state.clickableOrAddedMutationDomElements = [];
  state.allAttributeMutationDomElements = [];

  const clickable = new MutationObserver((mutations) => {
    for (const mutation of mutations) {
      if (mutation.type === 'childList') {
        for (const node of mutation.addedNodes) {
          if (node.nodeType === Node.ELEMENT_NODE) {
            state.clickableOrAddedMutationDomElements.push(node);
          }
        }
      } else if (mutation.type === 'attributes') {
        state.clickableOrAddedMutationDomElements.push(mutation.target);
      }
    }
  });
  clickable.observe(document.body, {
    childList: true,
    subtree: true,
    attributes: true,
    attributeFilter: ['href', 'onclick'],
  });

  const attributes = new MutationObserver((mutations) => {
    for (const mutation of mutations) {
      if (mutation.type === 'attributes') {
        state.allAttributeMutationDomElements.push(mutation.target);
      }
    }
  });
  attributes.observe(document.body, { attributes: true });

  state.observers = [clickable, attributes];
  state.recording = true;
  return true;
}
"""

ENCODE_CLICK_PATH_SCRIPT = """
(element) => {
  let path = '';
  while (element.parentNode != null) {
    path = Array.prototype.indexOf.call(element.parentNode.children, element) + '>' + path;
    element = element.parentNode;
  }
  return path;
}
"""

# Takes the child indices below <body> (see click_path.parse_click_path)
RESOLVE_CLICK_PATH_SCRIPT = """
(indices) => {
  let current = document.body;
  for (const index of indices) {
    if (!current) {
      return null;
    }
    current = current.children[index];
  }
  return current || null;
}
"""

# Returns {candidates: [{path, href}], mutated: [path], attributeMutationOccurred}
DETECT_CLICKABLE_ELEMENTS_SCRIPT = """
(submitForms) => {
  const state = window.__heimdall_v1 || {
    elementsWithClickEvents: [],
    clickableOrAddedMutationDomElements: [],
    allAttributeMutationDomElements: [],
  };
  const encode = __ENCODE_CLICK_PATH__;
  const usable = (element) => element
    && element.nodeType === Node.ELEMENT_NODE
    && element.isConnected
    && element.getRootNode() === document;

  const candidates = [];
  const seen = new Set();
  const add = (element) => {
    if (!usable(element) || seen.has(element)) {
      return;
    }
    seen.add(element);
    const href = typeof element.href === 'string' ? element.href : element.getAttribute('href');
    candidates.push({ path: encode(element), href: href });
  };

  state.elementsWithClickEvents.forEach(add);
  document.querySelectorAll('*').forEach((element) => {
    if (element.tagName.toLowerCase() !== 'link'
        && (element.onclick || element.hasAttribute('onclick') || element.href || element.hasAttribute('href'))) {
      add(element);
    }
  });
  if (submitForms) {
    document.querySelectorAll('[type="submit"]').forEach(add);
  }

  const mutated = [];
  state.clickableOrAddedMutationDomElements.forEach((element) => {
    if (usable(element)) {
      mutated.push(encode(element));
    }
  });

  return {
    candidates: candidates,
    mutated: mutated,
    attributeMutationOccurred: state.allAttributeMutationDomElements.length > 0,
  };
}
""".replace("__ENCODE_CLICK_PATH__", ENCODE_CLICK_PATH_SCRIPT.strip())

CLICK_ELEMENT_SCRIPT = """
(element) => {
  if (element.disabled) {
    element.disabled = false;
  }
  element.click();
}
"""

DOM_SNAPSHOT_SCRIPT = "() => document.documentElement ? document.documentElement.outerHTML : ''"


def build_startup_script(
    constant_date: Optional[str] = None,
    constant_random: Optional[float] = None,
) -> str:
    """
    Build the script injected into every new document.

    Args:
        constant_date: Date string every ``new Date()`` and ``Date.now()``
            resolves to, or None to keep the real clock
        constant_random: Value ``Math.random()`` returns, or None to keep
            real randomness

    Returns:
        JavaScript source
    """
    source = _STARTUP_SCRIPT

    if constant_date is not None:
        source += _CONSTANT_DATE_SHIM % json.dumps(constant_date)
    if constant_random is not None:
        source += _CONSTANT_RANDOM_SHIM % json.dumps(float(constant_random))

    return source
