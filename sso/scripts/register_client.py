"""
Script to register an OAuth client with the authorization server.

Creates the tables if needed, then registers the client and prints its
credentials. The plain client secret is shown once and only its bcrypt
hash is stored.

Usage:
    python -m sso.scripts.register_client
    python -m sso.scripts.register_client --client-id app-b-client \\
        --redirect-uri http://localhost:8001/oauth/callback --force
"""

import argparse
import logging
import secrets
from typing import List, Optional

from sqlalchemy.orm import Session

from sso.db import Base, SessionLocal, engine
from sso.oauth.models import OAuthClient
from sso.services.auth import hash_password

# Import models so SQLAlchemy registers them
from sso.models.user import User  # noqa: F401

logger = logging.getLogger(__name__)


class ClientAlreadyExistsError(Exception):
    pass


def register_client(
    db: Session,
    client_id: str,
    name: str,
    redirect_uris: List[str],
    client_type: str = "confidential",
    scopes: str = "openid profile email",
    require_pkce: bool = True,
    force: bool = False,
) -> Optional[str]:
    """
    Register a client, replacing an existing one only when force is set.

    Returns:
        The plain client secret for confidential clients, None for public ones

    Raises:
        ClientAlreadyExistsError: client_id is taken and force is False
    """
    existing = db.query(OAuthClient).filter(OAuthClient.client_id == client_id).first()
    if existing is not None:
        if not force:
            raise ClientAlreadyExistsError(client_id)
        db.delete(existing)
        db.flush()
        logger.info("Deleted existing client %s for re-registration", client_id)

    client_secret = None
    if client_type == "confidential":
        client_secret = secrets.token_hex(32)

    client = OAuthClient(
        client_id=client_id,
        client_secret=hash_password(client_secret) if client_secret else None,
        redirect_uris=list(redirect_uris),
        name=name,
        scopes=scopes,
        client_type=client_type,
        require_pkce=require_pkce,
        is_first_party=True,
        is_active=True,
    )
    db.add(client)
    db.commit()

    logger.info("Registered %s client %s", client_type, client_id)
    return client_secret


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Register an OAuth client")
    parser.add_argument("--client-id", default="app-b-client")
    parser.add_argument("--name", default="App B")
    parser.add_argument(
        "--redirect-uri",
        action="append",
        dest="redirect_uris",
        help="Allowed redirect URI (repeatable)",
    )
    parser.add_argument("--scopes", default="openid profile email")
    parser.add_argument("--public", action="store_true", help="Register a public client")
    parser.add_argument("--force", action="store_true", help="Replace an existing client")
    args = parser.parse_args(argv)

    redirect_uris = args.redirect_uris or ["http://localhost:8001/oauth/callback"]
    client_type = "public" if args.public else "confidential"

    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        client_secret = register_client(
            db,
            client_id=args.client_id,
            name=args.name,
            redirect_uris=redirect_uris,
            client_type=client_type,
            scopes=args.scopes,
            force=args.force,
        )
    except ClientAlreadyExistsError:
        print(f"Client {args.client_id} is already registered.")
        print("To re-register, run again with --force")
        return 1
    finally:
        db.close()

    print("\n" + "=" * 50)
    print("OAuth Client Registered")
    print("=" * 50)
    print(f"NAME: {args.name}")
    print(f"CLIENT_ID: {args.client_id}")
    if client_secret:
        print(f"CLIENT_SECRET: {client_secret}")
    print(f"TYPE: {client_type}")
    print("REDIRECT_URIS:")
    for uri in redirect_uris:
        print(f"  - {uri}")
    print(f"SCOPES: {args.scopes}")
    print("=" * 50)
    print("\nAdd these to the relying party's environment:")
    print(f"RP_CLIENT_ID={args.client_id}")
    if client_secret:
        print(f"RP_CLIENT_SECRET={client_secret}")
    print()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
