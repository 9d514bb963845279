"""Minimal text-only demonstration of the restaurant assistant."""

import asyncio

from platemate_core import ask, build_session_controller
from platemate_core.providers.device import PermissionStatus, Placemark


class FixedPermission:
    async def request_permission(self):
        return PermissionStatus.DENIED

    def current_status(self):
        return PermissionStatus.DENIED


class NoLocation:
    def start_updates(self):
        pass

    def request_once(self):
        pass


class NoGeocoder:
    async def resolve(self, coordinate):
        return Placemark()


async def main():
    controller = build_session_controller(FixedPermission(), NoLocation(), NoGeocoder())
    question = "Any good Italian restaurants around here?"
    result = await ask(controller, question)
    print("User:", question)
    for message in result["messages"][1:]:
        print("Assistant:", message["text"])
    for restaurant in result["restaurants"]:
        print(" -", restaurant["name"], restaurant["rating"])


if __name__ == "__main__":
    asyncio.run(main())
