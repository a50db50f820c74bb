"""
Auto Deployer
=============
Publishes the workspace to its deployment target and reports where it landed.

Deploy Flow:
    1. Optional backup branch at the current HEAD (debug-loop-iter-N)
    2. Commit pending workspace changes, if any
    3. Push HEAD to the configured branch
    4. Resolve the deployment URL for the target

URL Resolution:
    github-pages  — https://<owner>.github.io/<repo> from the git remote
    vercel        — custom_url or https://vercel.app
    netlify       — custom_url or https://netlify.app
    custom        — custom_url

Safety:
    - Never switches branches or rewrites history
    - rollback() is a `git revert` of HEAD, pushed like any deploy
"""
import asyncio
import logging
import re
import subprocess
from datetime import datetime, timezone
from typing import List, Literal, Optional

import httpx
from pydantic import BaseModel

from debugloop.core.config import HTTP_TIMEOUT_SECONDS
from debugloop.models.loop_config import DeploymentConfig

logger = logging.getLogger(__name__)


class DeploymentResult(BaseModel):
    success: bool
    deployment_url: Optional[str] = None
    commit_hash: Optional[str] = None
    branch: Optional[str] = None
    error: Optional[str] = None
    logs: List[str] = []


class DeploymentStatus(BaseModel):
    status: Literal["pending", "building", "deploying", "success", "failed"]
    url: Optional[str] = None
    logs: List[str] = []
    started_at: datetime
    completed_at: Optional[datetime] = None
    error: Optional[str] = None


class RollbackResult(BaseModel):
    success: bool
    error: Optional[str] = None


class ConfigValidation(BaseModel):
    valid: bool
    errors: List[str] = []


def _stamp(message: str) -> str:
    return f"[{datetime.now(timezone.utc).isoformat()}] {message}"


class AutoDeployer:
    """
    git-backed Deployer for a local workspace.

    Parameters
    ----------
    config : DeploymentConfig
        Target, remote, branch and workspace to deploy from.
    transport : httpx.AsyncBaseTransport or None
        Injected HTTP transport for check_status().
    """

    def __init__(self, config: DeploymentConfig, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.config = config
        self._transport = transport

    # -------------------------------------------------------------------
    # git helpers
    # -------------------------------------------------------------------
    def _git(self, *args: str) -> str:
        result = subprocess.run(
            ["git", *args],
            cwd=self.config.workspace_path,
            check=True,
            capture_output=True,
            text=True,
        )
        return result.stdout.strip()

    def _remote_name(self) -> str:
        # A configured URL is pushed to directly; otherwise use origin
        return self.config.git_remote or "origin"

    def _deploy_sync(
        self, commit_message: str, create_branch: bool, branch_name: Optional[str], logs: List[str],
    ) -> str:
        branch = self.config.git_branch
        remote = self._remote_name()

        if create_branch and branch_name:
            self._git("branch", "-f", branch_name)
            self._git("push", "-f", remote, f"{branch_name}:{branch_name}")
            logs.append(_stamp(f"Backup branch created: {branch_name}"))

        if self._git("status", "--porcelain"):
            self._git("add", "-A")
            self._git("commit", "-m", commit_message)
            logs.append(_stamp(f"Committed: {commit_message}"))
        else:
            logs.append(_stamp("No workspace changes to commit"))

        self._git("push", remote, f"HEAD:{branch}")
        logs.append(_stamp(f"Pushed HEAD to {branch}"))
        return self._git("rev-parse", "HEAD")

    # -------------------------------------------------------------------
    # Deployer contract
    # -------------------------------------------------------------------
    async def deploy(
        self,
        commit_message: str = "Debug loop deployment",
        create_branch: bool = False,
        branch_name: Optional[str] = None,
    ) -> DeploymentResult:
        """
        Commit, push and resolve the deployment URL.

        Never raises: git failures come back as success=False with the
        command's stderr in `error`.
        """
        logs = [
            _stamp("Starting deployment..."),
            f"Target: {self.config.target}",
            f"Environment: {self.config.environment}",
        ]
        validation = self.validate_config()
        if not validation.valid:
            return DeploymentResult(success=False, error="; ".join(validation.errors), logs=logs)

        try:
            commit_hash = await asyncio.to_thread(
                self._deploy_sync, commit_message, create_branch, branch_name, logs,
            )
        except subprocess.CalledProcessError as e:
            detail = (e.stderr or "").strip() or str(e)
            logger.error("Deployment failed: %s", detail)
            return DeploymentResult(success=False, error=detail, logs=logs)
        except Exception as e:
            logger.error("Deployment failed: %s", e)
            return DeploymentResult(success=False, error=str(e), logs=logs)

        url = self.get_deployment_url()
        logs.append(_stamp(f"Deployment complete: {url}"))
        logger.info("Deployed %s to %s (%s)", commit_hash[:8], url, self.config.target)
        return DeploymentResult(
            success=True,
            deployment_url=url,
            commit_hash=commit_hash,
            branch=self.config.git_branch,
            logs=logs,
        )

    async def check_status(self, url: str) -> DeploymentStatus:
        """Probe the deployment URL; 2xx/3xx is success, anything else failed.

        config.auth_token, when set, is sent as a bearer token for protected previews.
        """
        started = datetime.now(timezone.utc)
        headers = {"Authorization": f"Bearer {self.config.auth_token}"} if self.config.auth_token else {}
        try:
            async with httpx.AsyncClient(
                timeout=HTTP_TIMEOUT_SECONDS, transport=self._transport, follow_redirects=True, headers=headers,
            ) as client:
                response = await client.get(url)
            status = "success" if response.status_code < 400 else "failed"
            return DeploymentStatus(
                status=status,
                url=url,
                started_at=started,
                completed_at=datetime.now(timezone.utc),
                logs=[f"GET {url} -> {response.status_code}"],
            )
        except httpx.HTTPError as e:
            return DeploymentStatus(status="failed", url=url, started_at=started, error=str(e))

    async def rollback(self) -> RollbackResult:
        """Revert the last commit and push the revert."""
        def _revert() -> None:
            self._git("revert", "--no-edit", "HEAD")
            self._git("push", self._remote_name(), f"HEAD:{self.config.git_branch}")

        try:
            await asyncio.to_thread(_revert)
            logger.info("Rolled back HEAD on %s", self.config.git_branch)
            return RollbackResult(success=True)
        except subprocess.CalledProcessError as e:
            detail = (e.stderr or "").strip() or str(e)
            logger.error("Rollback failed: %s", detail)
            return RollbackResult(success=False, error=detail)

    def validate_config(self) -> ConfigValidation:
        errors = []
        if not self.config.target:
            errors.append("Deployment target is required")
        if self.config.target == "custom" and not self.config.custom_url:
            errors.append("Custom URL is required for custom deployment target")
        if self.config.target == "github-pages" and not self.config.git_remote:
            errors.append("Git remote is required for GitHub Pages deployment")
        return ConfigValidation(valid=not errors, errors=errors)

    def get_deployment_url(self) -> str:
        target = self.config.target
        if target == "github-pages":
            match = re.search(r"github\.com[:/]([^/]+)/([^/]+?)(?:\.git)?/?$", self.config.git_remote or "")
            if match:
                return f"https://{match.group(1)}.github.io/{match.group(2)}"
            return "https://github.io"
        if target == "vercel":
            return self.config.custom_url or "https://vercel.app"
        if target == "netlify":
            return self.config.custom_url or "https://netlify.app"
        return self.config.custom_url or "https://example.com"
