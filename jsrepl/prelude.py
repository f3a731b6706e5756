"""Host runtime evaluated into every JavaScript context before user code.

The prelude defines a non-enumerable ``__host`` global that the evaluator
drives from Python:

- ``__host.install(bindings, hostFunctions, excluded)`` installs the
  capability set: timers and the capturing console first, then caller
  bindings (tagged JSON, see jsrepl.codec), then host function bridges.
- ``__host.start(source, awaitPromises)`` builds the executable unit with
  ``new Function`` and runs it, settling immediately or when the returned
  promise settles.
- ``__host.runNextTimer()`` / ``__host.nextTimerDelay()`` let the Python
  event pump drive timers.
- ``__host.drainConsole()`` returns the buffered console lines as JSON.
- ``__host.collect()`` classifies and encodes the settled value, harvests
  user variables and returns everything as one JSON string.

The engine refuses calls into Python while a time limit is armed, so console
lines are buffered in JavaScript and drained by the evaluator. Host functions reach Python through callables registered
with ``Context.add_callable`` before the prelude runs; the prelude captures
and removes those raw globals so user code only sees the wrapped versions.
"""

from __future__ import annotations

HOST_FUNCTION_PREFIX = "__host_fn_"

HOST_PRELUDE = r"""
(function (g) {
  const TAG = '$t';
  const RESERVED_PREFIX = '_';
  const parseJSON = JSON.parse.bind(JSON);
  const stringifyJSON = JSON.stringify.bind(JSON);
  const hasOwn = (obj, key) => Object.prototype.hasOwnProperty.call(obj, key);

  const host = {};
  Object.defineProperty(g, '__host', { value: host, enumerable: false, writable: false, configurable: false });

  const userVariables = {};
  Object.defineProperty(g, '_userVariables', { value: userVariables, enumerable: false, writable: true, configurable: true });

  function describe(value) {
    try {
      return String(value);
    } catch (e) {
      return Object.prototype.toString.call(value);
    }
  }

  function sourceOf(fn) {
    try {
      return Function.prototype.toString.call(fn);
    } catch (e) {
      return 'function () { [native code] }';
    }
  }

  // Value codec: JavaScript half of jsrepl.codec

  function encode(value, ancestors) {
    if (value === undefined) return { [TAG]: 'undefined' };
    if (value === null) return null;
    switch (typeof value) {
      case 'boolean':
      case 'string':
        return value;
      case 'number':
        // Non-finite numbers and unsafe integers are tagged so they decode to floats
        if (Number.isFinite(value) && (!Number.isInteger(value) || Number.isSafeInteger(value))) {
          return value;
        }
        return { [TAG]: 'number', v: String(value) };
      case 'bigint':
        return { [TAG]: 'bigint', v: value.toString() };
      case 'symbol':
        return { [TAG]: 'symbol', v: value.description === undefined ? '' : value.description };
      case 'function':
        return { [TAG]: 'function', name: String(value.name || ''), source: sourceOf(value) };
    }
    if (value instanceof Date) {
      const time = value.getTime();
      return { [TAG]: 'date', v: Number.isNaN(time) ? null : value.toISOString() };
    }
    if (ancestors.indexOf(value) !== -1) {
      throw new TypeError('Converting circular structure');
    }
    ancestors.push(value);
    try {
      if (Array.isArray(value)) {
        const items = [];
        for (let i = 0; i < value.length; i++) items.push(encode(value[i], ancestors));
        return items;
      }
      const out = {};
      for (const key of Object.keys(value)) out[key] = encode(value[key], ancestors);
      return hasOwn(out, TAG) ? { [TAG]: 'object', v: out } : out;
    } finally {
      ancestors.pop();
    }
  }

  function decodeObject(raw) {
    const out = {};
    for (const key of Object.keys(raw)) out[key] = decode(raw[key]);
    return out;
  }

  function reviveFunction(raw) {
    try {
      return (0, eval)('(' + raw.source + ')');
    } catch (e) {
      return undefined;
    }
  }

  function decode(value) {
    if (Array.isArray(value)) return value.map(decode);
    if (value === null || typeof value !== 'object') return value;
    if (hasOwn(value, TAG)) {
      switch (value[TAG]) {
        case 'undefined': return undefined;
        case 'number': return Number(value.v);
        case 'bigint': return BigInt(value.v);
        case 'date': return value.v === null ? new Date(NaN) : new Date(value.v);
        case 'symbol': return Symbol(value.v);
        case 'function': return reviveFunction(value);
        case 'object': return decodeObject(value.v);
      }
    }
    return decodeObject(value);
  }

  function safeEncode(value) {
    try {
      return { value: encode(value, []), fallback: false };
    } catch (e) {
      return { value: describe(value), fallback: true };
    }
  }

  // Capturing console

  function formatArg(arg) {
    if (typeof arg === 'string') return arg;
    if (arg !== null && typeof arg === 'object' && !(arg instanceof Error)) {
      try {
        const text = stringifyJSON(arg);
        if (text !== undefined) return text;
      } catch (e) {
        // cyclic or throwing toJSON: use String()
      }
    }
    return describe(arg);
  }

  const consoleLines = [];

  function consoleSink(level, text) {
    consoleLines.push([level, text]);
  }

  host.drainConsole = function () {
    return stringifyJSON(consoleLines.splice(0, consoleLines.length));
  };

  const hostConsole = {};
  for (const level of ['log', 'info', 'warn', 'error', 'debug']) {
    hostConsole[level] = function (...args) {
      consoleSink(level, args.map(formatArg).join(' '));
    };
  }

  function reportUncaught(error) {
    consoleSink('error', 'Uncaught ' + formatArg(error));
  }

  // Timers, driven by the Python event pump

  const timers = new Map();
  let nextTimerId = 1;

  function schedule(callback, delay, args, repeat) {
    if (typeof callback !== 'function') {
      throw new TypeError('Timer callback must be a function');
    }
    const id = nextTimerId++;
    const ms = Math.max(0, Number(delay) || 0);
    timers.set(id, { callback: callback, args: args, delay: ms, repeat: repeat, due: Date.now() + ms });
    return id;
  }

  function cancel(id) {
    timers.delete(id);
  }

  const capabilities = {
    console: hostConsole,
    setTimeout: (callback, delay, ...args) => schedule(callback, delay, args, false),
    setInterval: (callback, delay, ...args) => schedule(callback, delay, args, true),
    setImmediate: (callback, ...args) => schedule(callback, 0, args, false),
    clearTimeout: cancel,
    clearInterval: cancel,
    clearImmediate: cancel,
    queueMicrotask: (callback) => {
      if (typeof callback !== 'function') {
        throw new TypeError('Microtask callback must be a function');
      }
      Promise.resolve().then(() => callback()).catch(reportUncaught);
    },
  };

  host.nextTimerDelay = function () {
    let due = Infinity;
    for (const timer of timers.values()) {
      if (timer.due < due) due = timer.due;
    }
    return due === Infinity ? -1 : Math.max(0, due - Date.now());
  };

  host.runNextTimer = function () {
    const now = Date.now();
    let nextId = -1;
    let next = null;
    for (const [id, timer] of timers) {
      if (timer.due > now) continue;
      if (next === null || timer.due < next.due) {
        nextId = id;
        next = timer;
      }
    }
    if (next === null) return false;
    if (next.repeat) {
      next.due = now + Math.max(1, next.delay);
    } else {
      timers.delete(nextId);
    }
    try {
      next.callback.apply(undefined, next.args);
    } catch (e) {
      reportUncaught(e);
    }
    return true;
  };

  // Capability installation

  let baseline = new Set();
  let excluded = new Set();
  const installed = new Map();

  function define(name, value) {
    Object.defineProperty(g, name, { value: value, writable: true, enumerable: true, configurable: true });
  }

  function bridge(raw) {
    return function (...args) {
      const encoded = args.map((arg) => safeEncode(arg).value);
      const reply = parseJSON(raw(stringifyJSON(encoded)));
      if (hasOwn(reply, 'error')) throw new Error(reply.error);
      return decode(reply.value);
    };
  }

  host.install = function (bindingsJson, hostFunctionsJson, excludedJson) {
    const bindings = parseJSON(bindingsJson);
    const hostFunctions = parseJSON(hostFunctionsJson);
    excluded = new Set(parseJSON(excludedJson));
    baseline = new Set(Object.keys(g));
    for (const name of Object.keys(capabilities)) define(name, capabilities[name]);
    for (const name of Object.keys(bindings)) {
      const value = decode(bindings[name]);
      try {
        installed.set(name, stringifyJSON(encode(value, [])));
      } catch (e) {
        installed.delete(name);
      }
      define(name, value);
    }
    for (const name of Object.keys(hostFunctions)) {
      const rawName = hostFunctions[name];
      const raw = g[rawName];
      delete g[rawName];
      define(name, bridge(raw));
    }
  };

  // Unit execution

  const state = { settled: false, ok: false, value: undefined, error: undefined };
  let probe = null;

  function settle(ok, payload) {
    if (state.settled) return;
    state.settled = true;
    state.ok = ok;
    if (ok) {
      state.value = payload;
    } else {
      state.error = payload;
    }
  }

  host.registerProbe = function (fn) {
    probe = fn;
  };

  host.isSettled = function () {
    return state.settled;
  };

  host.start = function (source, awaitPromises) {
    let result;
    try {
      const unit = new Function(source);
      result = unit.call(g);
    } catch (e) {
      settle(false, e);
      return;
    }
    let thenable = false;
    try {
      thenable = awaitPromises && result !== null &&
        (typeof result === 'object' || typeof result === 'function') &&
        typeof result.then === 'function';
    } catch (e) {
      settle(false, e);
      return;
    }
    if (!thenable) {
      settle(true, result);
      return;
    }
    Promise.resolve(result).then((value) => settle(true, value), (error) => settle(false, error));
  };

  // Result collection

  function classify(value) {
    if (value === null) return 'null';
    if (Array.isArray(value)) return 'array';
    if (value instanceof Date) return 'date';
    return typeof value;
  }

  function describeError(error) {
    if (error !== null && typeof error === 'object') {
      let name = 'Error';
      let message;
      let stack = null;
      try {
        name = String(error.name || 'Error');
        message = 'message' in error ? String(error.message) : describe(error);
        stack = error.stack ? String(error.stack) : null;
      } catch (e) {
        message = describe(error);
      }
      return { name: name, message: message, stack: stack };
    }
    return { name: 'Error', message: describe(error), stack: null };
  }

  function keep(key, value) {
    return !excluded.has(key) && !key.startsWith(RESERVED_PREFIX) && typeof value !== 'function';
  }

  function unchanged(key, value) {
    if (!installed.has(key)) return false;
    try {
      return stringifyJSON(encode(value, [])) === installed.get(key);
    } catch (e) {
      return false;
    }
  }

  function harvest() {
    const captured = {};
    for (const key of Object.keys(g)) {
      if (baseline.has(key)) continue;
      let value;
      try {
        value = g[key];
      } catch (e) {
        continue;
      }
      if (keep(key, value) && !unchanged(key, value)) captured[key] = value;
    }
    if (probe !== null) {
      const locals = probe();
      for (const key of Object.keys(locals)) {
        if (keep(key, locals[key])) captured[key] = locals[key];
      }
    }
    for (const key of Object.keys(captured)) userVariables[key] = captured[key];
    return captured;
  }

  host.collect = function () {
    const envelope = {
      settled: state.settled,
      ok: state.ok,
      kind: 'undefined',
      value: { [TAG]: 'undefined' },
      fallback: false,
      error: null,
      variables: {},
      variableFallbacks: [],
      probeError: null,
    };
    if (state.settled && state.ok) {
      envelope.kind = classify(state.value);
      const encoded = safeEncode(state.value);
      envelope.value = encoded.value;
      envelope.fallback = encoded.fallback;
    } else if (state.settled) {
      envelope.error = describeError(state.error);
    }
    let captured = {};
    try {
      captured = harvest();
    } catch (e) {
      envelope.probeError = describe(e);
    }
    for (const key of Object.keys(captured)) {
      const encoded = safeEncode(captured[key]);
      envelope.variables[key] = encoded.value;
      if (encoded.fallback) envelope.variableFallbacks.push(key);
    }
    return stringifyJSON(envelope);
  };
})(globalThis);
"""
