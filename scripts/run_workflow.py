#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Optional

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from api.services.automation import DEFAULT_WORKFLOWS, automation_service, load_inventory_context
from api.services.errors import ApiError


async def _run(workflow_id: str, product_id: Optional[str], context: dict[str, Any]) -> None:
    if product_id:
        try:
            context = {**await load_inventory_context(product_id), **context}
        except ApiError as exc:
            print(f"Run failed: {exc.message}")
            raise SystemExit(1)

    executed = await automation_service.execute_workflow(workflow_id, context)
    workflow = automation_service.get_workflow(workflow_id)
    print(f"Workflow: {workflow.name} ({workflow_id})")
    print(f"Executed: {executed}")
    print("Stats:")
    print(json.dumps(automation_service.stats(), indent=2))


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run an ERP automation workflow from CLI")
    parser.add_argument("workflow_id", choices=sorted(workflow["id"] for workflow in DEFAULT_WORKFLOWS))
    parser.add_argument("--product-id", help="inventory item whose data seeds the workflow context")
    parser.add_argument("--context", default="{}", help="extra context as a JSON object")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    asyncio.run(_run(args.workflow_id, args.product_id, json.loads(args.context)))


if __name__ == "__main__":
    main()
