from __future__ import annotations

import logging
import threading
from functools import cached_property
from typing import Any, Dict, Iterator, List, Optional

from botocore.client import BaseClient
from botocore.exceptions import ClientError
from retrying import retry

from cloudgraph.errors import FetchAccessDenied, PaginationError
from cloudgraph.fetch import FetchContext
from cloudgraph.json import value_in_path
from cloudgraph.types import Json
from cloudgraph_aws.configuration import DEFAULT_REGION, GLOBAL_REGION, AwsConfig

log = logging.getLogger("cloudgraph.aws")

ThrottlingErrors = {
    "EC2ThrottledException",
    "RequestThrottled",
    "RequestThrottledException",
    "ThrottledException",
    "Throttling",
    "ThrottlingException",
}
RetryableErrors = ThrottlingErrors | {
    "LimitExceededException",
    "RequestLimitExceeded",
    "RequestTimeout",
    "RequestTimeoutException",
    "TooManyRequestsException",
}
AuthErrors = {"AuthorizationError", "AuthFailure", "AuthFailureException", "UnauthorizedOperation"}


def error_code(e: ClientError) -> str:
    return e.response.get("Error", {}).get("Code") or "Unknown Code"


def is_retryable_exception(e: Exception) -> bool:
    if isinstance(e, ClientError) and error_code(e) in RetryableErrors:
        log.debug("AWS API request limit exceeded or throttling, retrying with exponential backoff")
        return True
    return False


def is_access_denied(e: ClientError) -> bool:
    code = error_code(e)
    message = e.response.get("Error", {}).get("Message") or ""
    return code in AuthErrors or code.lower().startswith("accessdenied") or "Access Denied" in message


class AwsClient:
    """
    Thin wrapper around boto3 clients of one region.
    All calls return the plain boto response dicts.
    """

    def __init__(self, config: AwsConfig, region: Optional[str] = None) -> None:
        self.config = config
        self.region = region or config.region
        self._clients: Dict[str, BaseClient] = {}
        self._lock = threading.Lock()

    def _client(self, aws_service: str) -> BaseClient:
        with self._lock:
            client = self._clients.get(aws_service)
            if client is None:
                client = self.config.sessions().client(aws_service, self.region)
                self._clients[aws_service] = client
            return client

    @retry(  # type: ignore
        stop_max_attempt_number=10,  # 10 attempts: 1000 max 60000: max wait time is 5 minutes
        wait_exponential_multiplier=1000,
        wait_exponential_max=60000,
        retry_on_exception=is_retryable_exception,
    )
    def _call_with_retry(self, aws_service: str, action: str, **kwargs: Any) -> Json:
        py_action = action.replace("-", "_")
        return getattr(self._client(aws_service), py_action)(**kwargs)  # type: ignore

    def call(
        self, aws_service: str, action: str, expected_errors: Optional[List[str]] = None, **kwargs: Any
    ) -> Optional[Json]:
        """
        Single api call. Throttled calls are retried with exponential backoff.
        Returns None if the call failed with one of the expected error codes.
        """
        arg_info = ""
        if kwargs:
            arg_info += " with args " + ", ".join([f"{key}={value}" for key, value in kwargs.items()])
        log.debug(f"[Aws] calling service={aws_service} action={action}{arg_info} region={self.region}")
        try:
            return self._call_with_retry(aws_service, action, **kwargs)
        except ClientError as e:
            code = error_code(e)
            if code in (expected_errors or []):
                log.debug(f"Expected error: {code}")
                return None
            elif is_access_denied(e):
                log.warning(f"Access denied to call service {aws_service} with action {action} code {code}: {e}")
                raise FetchAccessDenied(f"access denied: {aws_service} {action} in region {self.region}") from e
            else:
                raise

    def pages(
        self,
        aws_service: str,
        action: str,
        token_in: str,
        token_out: str,
        ctx: Optional[FetchContext] = None,
        **kwargs: Any,
    ) -> Iterator[Json]:
        """
        Yield page after page of a list call.
        The next request is issued as long as the last page carries the next token (token_out can be a path).
        """
        args = dict(kwargs)
        page_num = 0
        while True:
            if ctx is not None:
                ctx.check_cancelled()
            try:
                page = self.call(aws_service, action, **args) or {}
            except ClientError as e:
                raise PaginationError(aws_service, action, e) from e
            page_num += 1
            log.debug(f"[Aws] page {page_num} for service={aws_service} action={action}")
            yield page
            token = value_in_path(page, token_out)
            if not token:
                return
            args[token_in] = token

    def for_region(self, region: str) -> AwsClient:
        return AwsClient(self.config, region)

    @cached_property
    def global_region(self) -> AwsClient:
        """
        AWS serves some APIs only from a global region.
        """
        return self if self.region in (GLOBAL_REGION, DEFAULT_REGION) else self.for_region(DEFAULT_REGION)
