"""Seed script for clients and their connected data sources."""

import sys
from typing import Any, Dict

import yaml
from sqlalchemy.orm import Session

from app.database import SessionLocal
from app.models.client import Client
from app.models.data_source import DataSource, DataSourceStatus, SourceType


def build_data_source(client: Client, source_data: Dict[str, Any]) -> DataSource:
    """DataSource row from one YAML entry; raises ValueError on an unknown type."""
    return DataSource(
        client=client,
        type=SourceType(source_data["type"]),
        external_account_id=str(source_data["account_id"]),
        external_account_name=source_data.get("account_name"),
        credentials=source_data.get("credentials"),
        status=DataSourceStatus(source_data.get("status", "active")),
        config=source_data.get("config", {}),
    )


def seed_clients(db: Session, data: Dict[str, Any]) -> int:
    """Insert clients (and their data sources) that do not exist yet. Returns the number added."""
    added = 0
    for client_data in data.get("clients", []):
        existing = db.query(Client).filter(Client.name == client_data["name"]).first()
        if existing:
            print(f"Client {client_data['name']} already exists, skipping")
            continue

        client = Client(
            name=client_data["name"],
            primary_domain=client_data.get("primary_domain"),
            timezone=client_data.get("timezone", "UTC"),
            contact_emails=client_data.get("contact_emails", []),
            is_active=client_data.get("is_active", True),
        )
        db.add(client)
        for source_data in client_data.get("data_sources", []):
            db.add(build_data_source(client, source_data))
        added += 1
        print(f"Added client: {client_data['name']}")

    db.commit()
    return added


def main(yaml_file: str):
    """Seed clients from a YAML file."""
    db: Session = SessionLocal()
    try:
        with open(yaml_file, "r") as f:
            data = yaml.safe_load(f) or {}

        if not data.get("clients"):
            print("No clients found in YAML file")
            return

        added = seed_clients(db, data)
        print(f"Successfully seeded {added} clients")
    except (OSError, yaml.YAMLError, KeyError, ValueError) as e:
        print(f"Error seeding clients: {e}")
        db.rollback()
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage: python -m app.seed clients.yaml")
        sys.exit(1)
    main(sys.argv[1])
