import pytest


class FakeTaskBoard:
    """Task board holding chains as ``{chain_id: {task_id: status}}``."""

    def __init__(self, chains=None):
        self.chains = chains if chains is not None else {"CHAIN-1": {"T1": "pending", "T2": "pending"}}
        self.transitions = []

    async def chain_status(self, chain_id):
        tasks = self.chains.get(chain_id)
        if tasks is None:
            return None
        done = sum(1 for status in tasks.values() if status == "approved")
        return {"chain_id": chain_id, "tasks": len(tasks), "approved": done}

    async def task_status(self, chain_id, task_id):
        status = self.chains.get(chain_id, {}).get(task_id)
        if status is None:
            return None
        return {"task_id": task_id, "status": status}

    async def list_tasks(self, chain_id):
        return [
            {"task_id": task_id, "status": status}
            for task_id, status in self.chains.get(chain_id, {}).items()
        ]

    async def _move(self, name, chain_id, task_id, status):
        self.transitions.append((name, chain_id, task_id))
        self.chains[chain_id][task_id] = status
        return {"status": status}

    async def start_task(self, chain_id, task_id):
        return await self._move("start", chain_id, task_id, "in_progress")

    async def complete_task(self, chain_id, task_id):
        return await self._move("complete", chain_id, task_id, "completed")

    async def approve_task(self, chain_id, task_id):
        return await self._move("approve", chain_id, task_id, "approved")


@pytest.fixture
def task_board():
    return FakeTaskBoard()
