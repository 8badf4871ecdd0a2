"""Page-side scripts evaluated through the browser session.

Each constant is a JavaScript function expression suitable for
``page.evaluate``. Scripts return plain objects rather than JSON strings; the
driver serialises them back into Python dicts.
"""

REMOVE_OBSTACLES = """
() => {
    const adSelectors = [
        '[id*="ad-"]', '[id*="ads-"]', '[class*="ad-"]', '[class*="ads-"]',
        '[id*="banner"]', '[class*="banner"]',
        '[id*="sponsor"]', '[class*="sponsor"]',
        'iframe[src*="doubleclick"]', 'iframe[src*="googlesyndication"]',
        'iframe[src*="advertising"]', 'iframe[src*="/ads/"]',
        '.adsbygoogle', '#aswift', '[id^="google_ads"]',
        '[class*="video-ad"]', '[id*="video-ad"]',
    ];

    let adsRemoved = 0;
    for (const selector of adSelectors) {
        let elements = [];
        try {
            elements = document.querySelectorAll(selector);
        } catch (e) {
            continue;
        }
        for (const el of elements) {
            // Never strip anything that hosts or wraps the game itself.
            if (el.querySelector('canvas') || el.closest('[id*="game"]') || el.closest('[class*="game"]')) {
                continue;
            }
            el.remove();
            adsRemoved++;
        }
    }

    const consentSelectors = [
        '#didomi-notice-agree-button',
        '.fc-cta-consent',
        'button[aria-label*="accept" i]',
        'button[title*="accept" i]',
    ];
    for (const selector of consentSelectors) {
        const button = document.querySelector(selector);
        if (button && button.offsetParent !== null) {
            button.click();
            return { adsRemoved, consentAccepted: true, consentMatch: selector };
        }
    }

    const containers = document.querySelectorAll(
        '[id*="cookie"], [class*="cookie"], [id*="consent"], [class*="consent"], [id*="gdpr"], [class*="gdpr"]'
    );
    for (const container of containers) {
        for (const btn of container.querySelectorAll('button, a[role="button"]')) {
            const text = (btn.textContent || '').toLowerCase().trim();
            const id = (btn.id || '').toLowerCase();
            const className = String(btn.className || '').toLowerCase();
            const looksLikeAccept = (
                text.includes('accept all') || text.includes('allow all') ||
                text.includes('agree') || text === 'accept' || text === 'ok' ||
                id.includes('accept') || className.includes('accept')
            );
            const looksLikeGame = text.includes('play') || text.includes('game') || text.includes('start');
            if (looksLikeAccept && !looksLikeGame) {
                btn.click();
                return { adsRemoved, consentAccepted: true, consentMatch: text };
            }
        }
    }

    return { adsRemoved, consentAccepted: false, consentMatch: null };
}
"""

CLICK_START_CONTROL = """
() => {
    const exact = ['play', 'start', 'begin', 'play game', 'start game'];
    const partial = ['play now', 'start now'];
    const elements = document.querySelectorAll(
        'button, a[role="button"], div[role="button"], a, span[role="button"], ' +
        'input[type="button"], input[type="submit"], div, span, img, area'
    );

    for (const el of elements) {
        const text = (el.textContent || '').toLowerCase().trim();
        const attrs = [el.value, el.alt, el.title, el.getAttribute('aria-label')]
            .map(v => (v || '').toLowerCase().trim());
        const matches = exact.includes(text) ||
            partial.some(p => text.includes(p)) ||
            attrs.some(v => v === 'play' || v === 'start');
        if (!matches) {
            continue;
        }
        const rect = el.getBoundingClientRect();
        if (rect.width > 0 && rect.height > 0 && el.offsetParent !== null) {
            el.click();
            return { clicked: true, method: 'text', text: text || attrs.find(v => v) || '' };
        }
    }

    const canvas = document.querySelector('canvas');
    if (canvas && canvas.offsetParent !== null) {
        canvas.click();
        return { clicked: true, method: 'canvas', text: '' };
    }
    return { clicked: false, method: null, text: '' };
}
"""

FIND_TEXT_ELEMENT = """
(args) => {
    const search = String(args.text || '').toUpperCase();
    if (!search) {
        return { found: false, reason: 'empty_text' };
    }
    const candidates = [];
    for (const el of document.querySelectorAll('*')) {
        const text = (el.textContent || '').trim();
        const upper = text.toUpperCase();
        if (upper === search || (upper.includes(search) && text.length < 100)) {
            const rect = el.getBoundingClientRect();
            if (rect.width > 0 && rect.height > 0) {
                candidates.push(el);
            }
        }
    }
    if (candidates.length === 0) {
        return { found: false, reason: 'no_matching_element' };
    }
    // Shortest text first: the innermost element that still carries the label.
    candidates.sort((a, b) => (a.textContent || '').trim().length - (b.textContent || '').trim().length);
    const el = candidates[0];
    el.scrollIntoView({ behavior: 'instant', block: 'center' });
    const rect = el.getBoundingClientRect();
    const result = {
        found: true,
        tag: el.tagName,
        text: (el.textContent || '').trim(),
        x: rect.left + rect.width / 2,
        y: rect.top + rect.height / 2,
    };
    if (args.click) {
        el.click();
        el.dispatchEvent(new MouseEvent('click', { view: window, bubbles: true, cancelable: true }));
        result.clicked = true;
    }
    return result;
}
"""

FOCUS_SURFACE = """
() => {
    let canvas = document.querySelector('canvas');
    if (!canvas) {
        for (const iframe of document.querySelectorAll('iframe')) {
            try {
                const inner = iframe.contentDocument && iframe.contentDocument.querySelector('canvas');
                if (inner) {
                    canvas = inner;
                    break;
                }
            } catch (e) {
                // cross-origin frame
            }
        }
    }
    if (!canvas) {
        return { success: false, reason: 'no_canvas', inIframe: false, activeTag: null };
    }
    canvas.setAttribute('tabindex', '0');
    canvas.focus();
    const active = canvas.ownerDocument.activeElement;
    return {
        success: active === canvas,
        reason: active === canvas ? null : 'focus_not_acquired',
        inIframe: canvas.ownerDocument !== document,
        activeTag: active ? active.tagName : null,
    };
}
"""

GLOBAL_KEY_EVENT = """
(args) => {
    const init = {
        key: args.key,
        code: args.code,
        keyCode: args.keyCode,
        which: args.keyCode,
        bubbles: true,
        cancelable: true,
        composed: true,
    };
    const targets = [window, document, document.body].filter(Boolean);
    for (const target of targets) {
        target.dispatchEvent(new KeyboardEvent(args.type, init));
    }
    return targets.length;
}
"""

GLOBAL_POINTER_EVENT = """
(args) => {
    const target = document.elementFromPoint(args.x, args.y) || document.body;
    if (!target) {
        return false;
    }
    const base = {
        clientX: args.x,
        clientY: args.y,
        screenX: args.x,
        screenY: args.y,
        button: 0,
        buttons: args.phase === 'up' ? 0 : 1,
        bubbles: true,
        cancelable: true,
        composed: true,
        view: window,
    };
    const names = {
        down: [['pointerdown', PointerEvent], ['mousedown', MouseEvent]],
        move: [['pointermove', PointerEvent], ['mousemove', MouseEvent]],
        up: [['pointerup', PointerEvent], ['mouseup', MouseEvent]],
    }[args.phase] || [];
    for (const [name, Ctor] of names) {
        target.dispatchEvent(new Ctor(name, Object.assign({ pointerId: 1, isPrimary: true }, base)));
    }
    if (args.phase === 'up' && args.click) {
        target.dispatchEvent(new MouseEvent('click', base));
    }
    return true;
}
"""

WAIT_FOR_SURFACE_READY = """
(timeoutMs) => new Promise((resolve) => {
    const started = Date.now();
    const poll = () => {
        const canvas = document.querySelector('canvas');
        if (canvas && canvas.width > 0 && canvas.height > 0) {
            try {
                const ctx = canvas.getContext('2d');
                if (!ctx) {
                    // WebGL surface: sized is as close to ready as we can observe.
                    resolve(true);
                    return;
                }
                const data = ctx.getImageData(0, 0, canvas.width, canvas.height).data;
                for (let i = 3; i < data.length; i += 4) {
                    if (data[i] > 0) {
                        resolve(true);
                        return;
                    }
                }
            } catch (e) {
                // tainted canvas
                resolve(true);
                return;
            }
        }
        if (Date.now() - started >= timeoutMs) {
            resolve(false);
            return;
        }
        setTimeout(poll, 100);
    };
    poll();
})
"""

VIEWPORT_SIZE = """
() => ({ width: window.innerWidth, height: window.innerHeight })
"""

__all__ = [
    "CLICK_START_CONTROL",
    "FIND_TEXT_ELEMENT",
    "FOCUS_SURFACE",
    "GLOBAL_KEY_EVENT",
    "GLOBAL_POINTER_EVENT",
    "REMOVE_OBSTACLES",
    "VIEWPORT_SIZE",
    "WAIT_FOR_SURFACE_READY",
]
