import logging
from pathlib import Path
from typing import Optional, List, Dict, Any
from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from switchboard_cli.core import config as app_config  # For paths and SCOPES
from .exceptions import (
    GmailApiError,
    InvalidParameterError,
    NotAuthenticatedError,
    SessionExpiredError,
    SwitchboardError,
)

logger = logging.getLogger(__name__)

_RATE_LIMIT_REASONS = ("rateLimitExceeded", "userRateLimitExceeded", "quotaExceeded")


def _build_gmail_service(creds: Credentials) -> Any:
    try:
        service = build("gmail", "v1", credentials=creds)
        logger.debug("Gmail API service built successfully.")
        return service
    except HttpError as error:
        logger.error(
            f"API error building Gmail service: {error.resp.status} - {error.content}",
            exc_info=True,
        )
        raise GmailApiError(
            f"API error building Gmail service: {error.resp.status}",
            original_exception=error,
            status=error.resp.status,
        )


def _save_token(token_file: Path, creds: Credentials) -> None:
    try:
        with open(token_file, "w") as token_file_handle:
            token_file_handle.write(creds.to_json())
        logger.info(f"Gmail access token stored at: {token_file}")
    except OSError as e:
        # Non-fatal: the in-memory credentials are still good for this run
        logger.error(f"Failed to save token file at {token_file}: {e}", exc_info=True)


# --- Authentication ---
def get_authenticated_service():
    """
    Interactive login. Loads or refreshes the stored token, and runs the
    browser OAuth flow when neither works. Stores the resulting token.
    """
    creds = None
    token_file_path = Path(app_config.TOKEN_FILE)
    credentials_file_path = Path(app_config.CREDENTIALS_FILE)

    if token_file_path.exists():
        try:
            creds = Credentials.from_authorized_user_file(
                str(token_file_path), app_config.SCOPES
            )
        except ValueError as e:
            logger.warning(
                f"Could not load token from {token_file_path}: {e}. Will attempt re-authentication."
            )
            creds = None

    if creds and not creds.valid and creds.expired and creds.refresh_token:
        logger.info("Gmail access token is expired. Attempting to refresh.")
        try:
            creds.refresh(Request())
        except RefreshError as e:
            logger.warning(f"Failed to refresh Gmail token: {e}. Re-authentication required.")
            creds = None

    if not creds or not creds.valid:
        logger.info("No valid Gmail credentials found. Starting OAuth flow.")
        if not credentials_file_path.exists():
            err_msg = f"Credentials file not found at {credentials_file_path}. Cannot authenticate."
            logger.error(err_msg)
            raise NotAuthenticatedError(
                err_msg + " Please ensure 'credentials.json' is present and run login."
            )
        try:
            flow = InstalledAppFlow.from_client_secrets_file(
                str(credentials_file_path), app_config.SCOPES
            )
            creds = flow.run_local_server(
                port=0,
                prompt="consent",
                authorization_prompt_message="Switchboard needs read access to Gmail. Please follow browser instructions.",
            )
        except Exception as e:
            logger.error(f"OAuth flow failed: {e}", exc_info=True)
            raise NotAuthenticatedError(f"OAuth authorization failed: {e}", original_exception=e)

    _save_token(token_file_path, creds)
    return _build_gmail_service(creds)


def get_gmail_service_from_token(
    token_file_path_str: Optional[str] = None,
    scopes: Optional[List[str]] = None,
) -> Any:
    """
    Gets an authenticated Gmail API service client non-interactively using the stored token.
    Refreshes the token if expired and saves the refreshed token.

    Raises:
        NotAuthenticatedError: no token file exists (the user never logged in)
        SessionExpiredError: a token exists but is unusable or its refresh was rejected
        GmailApiError: the token endpoint or the service build failed for other reasons
    """
    token_file = Path(token_file_path_str or app_config.TOKEN_FILE)
    scopes = scopes or app_config.SCOPES
    logger.debug(f"Attempting to get Gmail service client from token file: {token_file}")

    if not token_file.exists():
        msg = f"Not authenticated: no token at {token_file}. Run 'switchboard login' first."
        logger.error(msg)
        raise NotAuthenticatedError(msg)

    try:
        creds = Credentials.from_authorized_user_file(str(token_file), scopes)
    except ValueError as e:
        logger.error(f"Failed to load credentials from token file {token_file}: {e}", exc_info=True)
        raise SessionExpiredError(f"Could not load token from {token_file}: {e}", original_exception=e)

    if not creds.valid:
        if creds.expired and creds.refresh_token:
            logger.info(f"Access token from {token_file} is expired. Attempting refresh.")
            try:
                creds.refresh(Request())
            except RefreshError as e_refresh:
                logger.error(f"Failed to refresh access token from {token_file}: {e_refresh}", exc_info=True)
                raise SessionExpiredError(
                    f"Token refresh failed: {e_refresh}. Run 'switchboard login' again.",
                    original_exception=e_refresh,
                )
            except TransportError as e_transport:
                logger.error(f"Could not reach the token endpoint: {e_transport}", exc_info=True)
                raise GmailApiError(
                    f"Could not reach the token endpoint: {e_transport}",
                    original_exception=e_transport,
                )
            logger.info(f"Access token refreshed successfully using token from {token_file}.")
            _save_token(token_file, creds)
        else:
            msg = (
                f"Token from {token_file} is invalid and cannot be refreshed "
                f"(expired: {creds.expired}, has_refresh: {bool(creds.refresh_token)})."
            )
            logger.error(msg)
            raise SessionExpiredError(msg + " Run 'switchboard login' again.")

    return _build_gmail_service(creds)


# --- Error Translation ---
def _translate_http_error(error: HttpError, action: str) -> SwitchboardError:
    """Maps a Gmail HttpError to SessionExpiredError (auth) or GmailApiError (anything else)."""
    status = getattr(error.resp, "status", None)
    content = error.content.decode("utf-8", "replace") if isinstance(error.content, bytes) else str(error.content)
    logger.error(f"API error {action}: {status} - {content}", exc_info=True)

    is_rate_limit = any(reason in content for reason in _RATE_LIMIT_REASONS)
    if status == 401 or (status == 403 and not is_rate_limit) or "invalid_grant" in content:
        return SessionExpiredError(
            f"Session expired. Gmail rejected the credentials while {action} ({status}).",
            original_exception=error,
        )
    return GmailApiError(
        f"API error {action}: {status} {content}".strip(),
        original_exception=error,
        status=status,
    )


# --- Count Lookups ---
def fetch_exact_folder_counts(service: Any) -> Dict[str, int]:
    """
    Exact thread totals for the inbox, read from the INBOX label's own
    statistics (`threadsTotal`, `threadsUnread`) in one request.
    """
    if not service:
        raise InvalidParameterError("Gmail service not available for fetch_exact_folder_counts.")

    try:
        logger.debug(f"API: Getting label statistics for {app_config.INBOX_LABEL_ID}")
        label = (
            service.users()
            .labels()
            .get(userId="me", id=app_config.INBOX_LABEL_ID)
            .execute()
        )
    except HttpError as error:
        raise _translate_http_error(error, "getting inbox label counts")

    total = label.get("threadsTotal") or 0
    unread = label.get("threadsUnread") or 0
    return {"total": total, "unread": min(unread, total)}


def fetch_estimated_counts(service: Any, queries: List[str]) -> List[Dict[str, int]]:
    """
    Approximate {total, unread} per query from Gmail's `resultSizeEstimate`.

    Every query costs two `threads.list` sub-requests (the query, and the
    query restricted to unread), all sent in a single batch HTTP request
    per ESTIMATE_BATCH_SIZE queries. Results come back in query order.
    A blank query returns zeros without a request.
    """
    if not service:
        raise InvalidParameterError("Gmail service not available for fetch_estimated_counts.")
    if queries is None:
        raise InvalidParameterError("queries must be a list of Gmail search strings.")

    results: List[Dict[str, int]] = [{"total": 0, "unread": 0} for _ in queries]
    pending = [(i, q.strip()) for i, q in enumerate(queries) if q and q.strip()]
    batch_size = app_config.ESTIMATE_BATCH_SIZE

    for start in range(0, len(pending), batch_size):
        chunk = pending[start : start + batch_size]
        responses: Dict[str, Dict[str, Any]] = {}
        failures: List[Any] = []

        def _collect(request_id, response, exception):
            if exception is not None:
                failures.append((request_id, exception))
            else:
                responses[request_id] = response

        batch = service.new_batch_http_request(callback=_collect)
        threads_api = service.users().threads()
        for index, query in chunk:
            batch.add(
                threads_api.list(
                    userId="me", labelIds=[app_config.INBOX_LABEL_ID], maxResults=1, q=query
                ),
                request_id=f"{index}:total",
            )
            batch.add(
                threads_api.list(
                    userId="me",
                    labelIds=[app_config.INBOX_LABEL_ID],
                    maxResults=1,
                    q=f"({query}) is:unread",
                ),
                request_id=f"{index}:unread",
            )

        logger.debug(f"API: Batch estimating {len(chunk)} queries ({len(chunk) * 2} sub-requests).")
        try:
            batch.execute()
        except HttpError as error:
            raise _translate_http_error(error, "estimating search counts")

        if failures:
            request_id, exception = failures[0]
            if isinstance(exception, HttpError):
                raise _translate_http_error(exception, f"estimating search counts (request {request_id})")
            logger.error(f"Unexpected batch failure for request {request_id}: {exception}")
            raise SwitchboardError(
                f"Unexpected error estimating search counts: {exception}",
                original_exception=exception,
            )

        for index, _query in chunk:
            total_response = responses.get(f"{index}:total")
            unread_response = responses.get(f"{index}:unread")
            if total_response is None or unread_response is None:
                err_msg = f"Missing batch response for query #{index + 1}."
                logger.error(err_msg)
                raise GmailApiError(err_msg)
            total = total_response.get("resultSizeEstimate") or 0
            unread = unread_response.get("resultSizeEstimate") or 0
            # Estimates are computed independently and can disagree
            results[index] = {"total": total, "unread": min(unread, total)}

    return results
