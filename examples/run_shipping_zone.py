#!/usr/bin/env python3
"""Run the shipping-zone workflow against an in-memory fake of a commerce API.

    python examples/run_shipping_zone.py            # happy path
    python examples/run_shipping_zone.py --fail     # method creation fails, watch the rollback
"""
from __future__ import annotations

import argparse
import itertools
import logging
import sys
from pathlib import Path

from apiflow import ExecutionMode, WorkflowExecutionError, WorkflowExecutor, load_workflow
from apiflow.invokers import InMemoryInvoker
from apiflow.orchestration.workflow_engine import OperationError
from apiflow.ui.console import ConsoleManager

DOCUMENT = Path(__file__).with_name("shipping_zone_workflow.json")

COUNTRIES = {"AU": "AU-1", "NZ": "NZ-1", "US": "US-1"}


class FakeStore:
    """Just enough state to make the workflow's calls meaningful."""

    def __init__(self, fail_method: bool = False):
        self.fail_method = fail_method
        self.zones = {}
        self.methods = {}
        self._ids = itertools.count(1)

    def register(self, invoker: InMemoryInvoker) -> None:
        invoker.register("shopCountries", self.shop_countries)
        invoker.register("shippingZoneCreate", self.create_zone)
        invoker.register("shippingZoneUpdate", self.update_zone)
        invoker.register("shippingZoneDelete", self.delete_zone)
        invoker.register("shippingPriceCreate", self.create_method)
        invoker.register("shippingPriceDelete", self.delete_method)

    def shop_countries(self, variables):
        countries = [{"id": COUNTRIES[c], "code": c} for c in variables["codes"] if c in COUNTRIES]
        return {"data": {"shop": {"countries": countries}}}

    def create_zone(self, variables):
        zone_id = f"Z-{next(self._ids)}"
        self.zones[zone_id] = {"name": variables["input"]["name"], "countries": []}
        return {"data": {"shippingZoneCreate": {"shippingZone": {"id": zone_id}, "errors": []}}}

    def update_zone(self, variables):
        zone = self.zones[variables["id"]]
        for country_id in variables["input"].get("addCountries", []):
            zone["countries"].append(country_id)
        for country_id in variables["input"].get("removeCountries", []):
            zone["countries"].remove(country_id)
        codes = [code for code, cid in COUNTRIES.items() if cid in zone["countries"]]
        return {
            "data": {
                "shippingZoneUpdate": {
                    "shippingZone": {"id": variables["id"], "countries": [{"code": c} for c in codes]},
                    "errors": [],
                }
            }
        }

    def delete_zone(self, variables):
        del self.zones[variables["id"]]
        return {"data": {"shippingZoneDelete": {"errors": []}}}

    def create_method(self, variables):
        if self.fail_method:
            raise OperationError("shippingPriceCreate", "price must be positive", status_code=400)
        method_id = f"M-{next(self._ids)}"
        self.methods[method_id] = variables["input"]
        return {"data": {"shippingPriceCreate": {"shippingMethod": {"id": method_id}, "errors": []}}}

    def delete_method(self, variables):
        del self.methods[variables["id"]]
        return {"data": {"shippingPriceDelete": {"errors": []}}}


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--fail", action="store_true", help="Make shipping method creation fail")
    parser.add_argument("--parallel", action="store_true", help="Run independent steps concurrently")
    args = parser.parse_args()

    console = ConsoleManager()
    console.setup_logging(logging.getLogger("apiflow"))

    store = FakeStore(fail_method=args.fail)
    invoker = InMemoryInvoker()
    store.register(invoker)

    document = load_workflow(DOCUMENT)
    mode = ExecutionMode.PARALLEL if args.parallel else ExecutionMode.SEQUENTIAL
    executor = WorkflowExecutor(invoker, mode=mode)

    try:
        result = executor.execute(document)
    except WorkflowExecutionError as e:
        console.print_error(str(e))
        console.print_run_summary(e.result)
        print(f"Zones left behind: {store.zones}", file=sys.stderr)
        return 1

    console.print_run_summary(result)
    print(f"Zones: {store.zones}", file=sys.stderr)
    print(f"Methods: {store.methods}", file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())
