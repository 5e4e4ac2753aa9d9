"""
Judgment route - fetch a normalized context for one pull request, issue or
commit and ask the judgment model for a verdict on it.
"""

import logging

from fastapi import APIRouter, Depends, Request, status
from pydantic import ValidationError

from gitconnect.auth.credentials import ResolvedCredential, get_github_credential
from gitconnect.errors import GatewayError, validation_issues
from gitconnect.judgment.context import ContextFetcher, GitHubDataError, JudgmentContext
from gitconnect.judgment.invoker import (
    JudgmentConfigError,
    JudgmentInvocationError,
    JudgmentInvoker,
)
from gitconnect.judgment.schemas import JudgmentRequest

logger = logging.getLogger(__name__)

router = APIRouter(tags=["judgment"])


async def build_context(fetcher: ContextFetcher, payload: JudgmentRequest) -> JudgmentContext:
    target = payload.target
    limits = payload.fetch_limits()
    if target.type == "pull_request":
        return await fetcher.pull_request(target.owner, target.repo, target.number, limits)
    if target.type == "issue":
        return await fetcher.issue(target.owner, target.repo, target.number, limits)
    return await fetcher.commit(target.owner, target.repo, target.sha, limits)


async def parse_judgment_request(request: Request) -> JudgmentRequest:
    try:
        body = await request.json()
    except ValueError:
        raise GatewayError(
            status.HTTP_400_BAD_REQUEST,
            "INVALID_REQUEST",
            "Request body failed validation",
            details=[{"path": "", "message": "Body is not valid JSON"}],
        )
    try:
        return JudgmentRequest.model_validate(body)
    except ValidationError as e:
        raise GatewayError(
            status.HTTP_400_BAD_REQUEST,
            "INVALID_REQUEST",
            "Request body failed validation",
            details=validation_issues(e),
        )


@router.post("/judgment")
async def create_judgment(
    request: Request,
    payload: JudgmentRequest = Depends(parse_judgment_request),
    credential: ResolvedCredential = Depends(get_github_credential),
):
    """
    Generate a judgment for a GitHub target

    Returns:
        ``{success, data: {context, judgment}}``
    """
    fetcher = ContextFetcher(request.app.state.github_client, credential.token)
    invoker: JudgmentInvoker = request.app.state.judgment_invoker

    try:
        context = await build_context(fetcher, payload)
    except GitHubDataError as e:
        raise GatewayError(
            status.HTTP_502_BAD_GATEWAY,
            "GITHUB_FETCH_FAILED",
            str(e),
            details=e.github_error,
        )

    try:
        verdict = await invoker.invoke(context)
    except JudgmentConfigError as e:
        logger.error(f"Judgment model misconfigured: {e}")
        raise GatewayError(
            status.HTTP_500_INTERNAL_SERVER_ERROR, "MODEL_CONFIG_ERROR", str(e)
        )
    except JudgmentInvocationError as e:
        raise GatewayError(
            status.HTTP_502_BAD_GATEWAY,
            "MODEL_INVOCATION_FAILED",
            e.message,
            details={"cause": str(e.cause)} if e.cause is not None else None,
        )

    return {
        "success": True,
        "data": {
            "context": context.model_dump(mode="json"),
            "judgment": verdict.model_dump(mode="json"),
        },
    }
