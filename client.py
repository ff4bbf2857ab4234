import requests
from typing import Optional


class VaultClient:
    """Simple REST client for the vault workout API."""

    def __init__(self, base_url: str = "http://localhost:8000", vault_id: int = 1) -> None:
        self.base_url = base_url.rstrip("/")
        self.vault_id = vault_id

    @property
    def _vault(self) -> str:
        return f"{self.base_url}/vaults/{self.vault_id}"

    def create_vault(self, name: str) -> int:
        resp = requests.post(f"{self.base_url}/vaults", params={"name": name})
        resp.raise_for_status()
        return resp.json()["id"]

    def create_exercise(
        self, name: str, modality: str = "REPS", uses_bodyweight: bool = False
    ) -> int:
        resp = requests.post(
            f"{self._vault}/exercises",
            params={"name": name, "modality": modality, "uses_bodyweight": uses_bodyweight},
        )
        resp.raise_for_status()
        return resp.json()["id"]

    def list_exercises(self, **params: str):
        resp = requests.get(f"{self._vault}/exercises", params=params)
        resp.raise_for_status()
        return resp.json()

    def create_template(self, name: str) -> int:
        resp = requests.post(f"{self._vault}/templates", params={"name": name})
        resp.raise_for_status()
        return resp.json()["id"]

    def add_template_item(
        self, template_id: int, exercise_id: int, target_sets: Optional[int] = None
    ) -> int:
        params = {"exercise_id": exercise_id}
        if target_sets is not None:
            params["target_sets"] = target_sets
        resp = requests.post(f"{self._vault}/templates/{template_id}/items", params=params)
        resp.raise_for_status()
        return resp.json()["id"]

    def start_session(self, template_id: int, day: Optional[str] = None) -> int:
        params = {"template_id": template_id}
        if day:
            params["day"] = day
        resp = requests.post(f"{self._vault}/sessions", params=params)
        resp.raise_for_status()
        return resp.json()["id"]

    def get_session(self, session_id: int) -> dict:
        resp = requests.get(f"{self._vault}/sessions/{session_id}")
        resp.raise_for_status()
        return resp.json()

    def save_set(self, session_id: int, set_id: int, **values) -> dict:
        params = {k: v for k, v in values.items() if v is not None}
        resp = requests.put(f"{self._vault}/sessions/{session_id}/sets/{set_id}", params=params)
        resp.raise_for_status()
        return resp.json()

    def quick_log(self, exercise_id: int, **values) -> dict:
        params = {"exercise_id": exercise_id}
        params.update({k: v for k, v in values.items() if v is not None})
        resp = requests.post(f"{self._vault}/quick_log", params=params)
        resp.raise_for_status()
        return resp.json()

    def analytics(self, **params) -> dict:
        resp = requests.get(f"{self._vault}/analytics", params=params)
        resp.raise_for_status()
        return resp.json()
