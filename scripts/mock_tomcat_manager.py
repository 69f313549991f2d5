#!/usr/bin/env python3
"""
Mock Tomcat manager for trying the tomcat_deploy step without a server.

Implements the parts of the manager "text" interface stagerun uses:
- PUT /manager/text/deploy?path=/app&update=true  (body: WAR bytes)
- GET /manager/text/list
- GET /manager/text/undeploy?path=/app

Credentials come from MOCK_TOMCAT_USER / MOCK_TOMCAT_PASSWORD
(default deployer / secret).

Run with: python scripts/mock_tomcat_manager.py
Runs on: http://localhost:8099
"""
import hashlib
import os
import secrets
from datetime import datetime, timezone
from typing import Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse
from fastapi.security import HTTPBasic, HTTPBasicCredentials
import uvicorn

USERNAME = os.getenv("MOCK_TOMCAT_USER", "deployer")
PASSWORD = os.getenv("MOCK_TOMCAT_PASSWORD", "secret")

app = FastAPI(
    title="Mock Tomcat Manager",
    description="Test endpoint for stagerun tomcat_deploy steps",
    version="1.0.0"
)

security = HTTPBasic()

# Context path -> deployment info
deployments: Dict[str, Dict] = {}


def require_manager(credentials: HTTPBasicCredentials = Depends(security)) -> str:
    """Accept only the configured manager-script user."""
    user_ok = secrets.compare_digest(credentials.username.encode(), USERNAME.encode())
    password_ok = secrets.compare_digest(credentials.password.encode(), PASSWORD.encode())
    if not (user_ok and password_ok):
        raise HTTPException(401, "Unauthorized", headers={"WWW-Authenticate": "Basic"})
    return credentials.username


@app.put("/manager/text/deploy", response_class=PlainTextResponse)
async def deploy(
    request: Request,
    path: str = Query(...),
    update: bool = Query(False),
    tag: Optional[str] = Query(None),
    user: str = Depends(require_manager),
):
    """Deploy the WAR in the request body at `path`."""
    if not path.startswith("/"):
        return f"FAIL - Invalid context path [{path}] was specified"
    if path in deployments and not update:
        return f"FAIL - Application already exists at path [{path}]"

    body = await request.body()
    if not body.startswith(b"PK"):
        return f"FAIL - Failed to deploy application at context path [{path}]"

    deployments[path] = {
        "size": len(body),
        "sha256": hashlib.sha256(body).hexdigest(),
        "tag": tag,
        "deployed_by": user,
        "deployed_at": datetime.now(timezone.utc).isoformat(),
    }
    print(f"Deployed {len(body)} bytes at {path} (tag={tag})")
    return f"OK - Deployed application at context path [{path}]"


@app.get("/manager/text/list", response_class=PlainTextResponse)
async def list_applications(user: str = Depends(require_manager)):
    """List deployed applications in the manager's text format."""
    lines = ["OK - Listed applications for virtual host [localhost]"]
    for path in sorted(deployments):
        lines.append(f"{path}:running:0:{path.strip('/') or 'ROOT'}")
    return "\n".join(lines)


@app.get("/manager/text/undeploy", response_class=PlainTextResponse)
async def undeploy(path: str = Query(...), user: str = Depends(require_manager)):
    """Remove a deployed application."""
    if deployments.pop(path, None) is None:
        return f"FAIL - No context exists named [{path}]"
    return f"OK - Undeployed application at context path [{path}]"


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy", "deployments": len(deployments)}


if __name__ == "__main__":
    print("\n" + "="*60)
    print("  Mock Tomcat Manager")
    print(f"  Credentials: {USERNAME} / {'*' * len(PASSWORD)}")
    print("="*60)
    print("\nEndpoints:")
    print("  PUT /manager/text/deploy    - Deploy a WAR")
    print("  GET /manager/text/list      - List applications")
    print("  GET /manager/text/undeploy  - Undeploy an application")
    print("\nStarting server on http://localhost:8099 ...")
    print("="*60 + "\n")

    uvicorn.run(app, host="0.0.0.0", port=8099, log_level="info")
