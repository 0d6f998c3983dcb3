"""Selectors and label vocabularies for the note.com web editor."""

LOGGED_IN_SELECTORS = [
    ".nc-header__user-menu",
    ".nc-header__profile",
    ".nc-header__post-button",
    'a[href^="/notes/new"]',
]

LOGGED_OUT_SELECTORS = [
    'a[href*="/login"]',
    'button:has-text("ログイン")',
    'a:has-text("ログイン")',
]

LOGIN_EMAIL_SELECTORS = [
    "input#email",
    'input[name="email"]',
    'input[type="email"]',
    'input[autocomplete="username"]',
]

LOGIN_PASSWORD_SELECTORS = [
    "input#password",
    'input[name="password"]',
    'input[type="password"]',
]

LOGIN_SUBMIT_SELECTORS = [
    'button:has-text("ログイン")',
    'button[type="submit"]',
]

NEW_POST_SELECTORS = [
    ".nc-header__post-button",
    'button:has-text("投稿")',
    'a:has-text("投稿")',
]

TEXT_POST_TYPE_SELECTORS = [
    'a:has-text("テキスト")',
    'button:has-text("テキスト")',
    '[role="menuitem"]:has-text("テキスト")',
]

SAVE_DRAFT_SELECTORS = [
    'button:has-text("下書き保存")',
    'button:has-text("一時保存")',
    'button:has-text("Save draft")',
]

BLOCKED_PAGE_HINTS = [
    "Access Denied",
    "ロボットではありません",
]

# Visible labels of dismiss affordances on tutorials, tours and announcement modals.
DISMISS_LABELS = [
    "次へ",
    "閉じる",
    "スキップ",
    "OK",
    "とじる",
    "あとで",
    "Next",
    "Close",
    "Skip",
    "Got it",
    "×",
]

DISMISS_ARIA_LABELS = [
    "閉じる",
    "close",
    "Close",
]

# Overlay roots that ignore clicks and are removed from the DOM instead.
OVERLAY_ROOT_SELECTORS = [
    "#___reactour",
    ".reactour__helper",
    ".o-modalTutorial",
    ".m-tutorialOverlay",
    '[class*="Tutorial"][class*="overlay"]',
    '[data-testid="onboarding-overlay"]',
]
