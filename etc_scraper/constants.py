"""ETC meisai portal URLs, element queries, and page-script markers."""

from .models.page import ElementQuery

# ── URLs ─────────────────────────────────────────────────────────────────────

ETC_MEISAI_URL = "https://www.etc-meisai.jp/"
LOGIN_FUNC_CODE = "funccode=1013000000"

# ── Element Queries ──────────────────────────────────────────────────────────

QUERIES = {
    # Top page / login form
    "login_link": ElementQuery(
        name="login_link", tag="a", attr_contains={"href": LOGIN_FUNC_CODE}
    ),
    "login_user_id": ElementQuery(
        name="login_user_id", tag="input", attrs={"name": "risLoginId"}
    ),
    "login_password": ElementQuery(
        name="login_password", tag="input", attrs={"name": "risPassword"}
    ),
    "login_button": ElementQuery(
        name="login_button", tag="input", attrs={"type": "button", "value": "ログイン"}
    ),

    # Post-login menu
    "search_criteria_link": ElementQuery(
        name="search_criteria_link", tag="a", text_contains=("検索条件の指定",)
    ),

    # Search criteria form
    "all_usage_option": ElementQuery(
        name="all_usage_option", tag="input", attrs={"name": "sokoKbn", "value": "0"}
    ),
    "save_settings_button": ElementQuery(
        name="save_settings_button", tag="input", attrs={"name": "focusTarget_Save"}
    ),
    "search_button": ElementQuery(
        name="search_button", tag="input", attrs={"name": "focusTarget"}
    ),

    # Results page
    "csv_export_link": ElementQuery(
        name="csv_export_link", tag="a", text_contains=("明細",), text_any=("CSV", "ＣＳＶ")
    ),
}

# The search criteria link only renders for an authenticated session.
POST_LOGIN_MARKER = QUERIES["search_criteria_link"]

# ── Page Scripts ─────────────────────────────────────────────────────────────

# The results page defines these functions once its scripts have loaded.
RESULTS_READY_JS = "(typeof goOutput === 'function' && typeof submitOpenPage === 'function')"

# ── CDP ──────────────────────────────────────────────────────────────────────

DIALOG_OPENING_EVENT = "Page.javascriptDialogOpening"
DOWNLOAD_BEGIN_EVENT = "Page.downloadWillBegin"

# Chrome writes in-progress downloads under these suffixes.
PARTIAL_DOWNLOAD_SUFFIXES = (".crdownload", ".part", ".tmp", ".download")
DOWNLOAD_PATTERN = "*.csv"
