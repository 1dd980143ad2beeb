"""Field catalogue commands: sync, list and search."""

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from issuetwin import IssueTwin

logger = logging.getLogger(__name__)

LIST_LIMIT = 50


def cmd_field(args, twin: "IssueTwin"):
    """Handle field subcommands."""
    host = twin.config.get_host(args.host)

    if args.field_action == "sync":
        print(f"Fetching fields from {host.name}...")
        path = twin.sync_fields(host.name)
        catalogue = twin.field_aliases.catalogue(host.name) or {}
        custom = sum(1 for f in catalogue.values() if f.get("custom"))
        print(f"Found {len(catalogue)} fields ({custom} custom)")
        print(f"✓ Saved to {path}")
        return

    catalogue = twin.field_aliases.catalogue(host.name)
    if catalogue is None:
        print(f'No field cache for {host.name}. Run "issuetwin field sync" first.')
        return

    if args.field_action == "list":
        custom = [(fid, f) for fid, f in catalogue.items() if f.get("custom")]
        print(f"Custom fields for {host.name}:\n")
        print("ID                      NAME")
        print("─" * 60)
        for field_id, definition in custom[:LIST_LIMIT]:
            print(f"{field_id:<22}  {definition.get('name')}")
        if len(custom) > LIST_LIMIT:
            print(f"\n... and {len(custom) - LIST_LIMIT} more custom fields")
        print(f"\nTotal: {len(custom)} custom fields")

    elif args.field_action == "search":
        query = args.query.lower()
        matches = [
            (fid, f)
            for fid, f in catalogue.items()
            if query in fid.lower() or query in str(f.get("name", "")).lower()
        ]
        if not matches:
            print(f"No fields matching: {args.query}")
            return
        print(f'Fields matching "{args.query}":\n')
        for field_id, definition in matches:
            print(field_id)
            print(f"  Name: {definition.get('name')}")
            if definition.get("clause_names"):
                print(f"  Query names: {', '.join(definition['clause_names'])}")
            print("")
