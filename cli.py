import argparse
import json
import logging
import shutil

from db import Database, VaultRepository

logger = logging.getLogger(__name__)


def _api(db_path: str, yaml_path: str):
    from rest_api import VaultAPI

    return VaultAPI(db_path=db_path, yaml_path=yaml_path)


def backup_db(db_path: str, backup_path: str) -> None:
    shutil.copy(db_path, backup_path)


def restore_db(backup_path: str, db_path: str) -> None:
    shutil.copy(backup_path, db_path)


def vacuum_db(db_path: str) -> None:
    Database(db_path).vacuum()


def demo_data(db_path: str, yaml_path: str) -> int:
    """Create a demo vault with one template and a partly logged session."""
    api = _api(db_path, yaml_path)
    vault_id = api.vaults.create("Demo")
    bench = api.exercise_service.create(vault_id, "Bench Press", "REPS")
    plank = api.exercise_service.create(vault_id, "Plank", "ISOMETRIC", True)
    chest = api.targets.fetch_by_slug("pectoralis-major")
    core = api.targets.fetch_by_slug("rectus-abdominis")
    if chest:
        api.exercise_service.set_targets(
            vault_id, bench, [{"target_id": chest["id"], "role": "PRIMARY"}]
        )
    if core:
        api.exercise_service.set_targets(
            vault_id, plank, [{"target_id": core["id"], "role": "PRIMARY"}]
        )
    template_id = api.template_service.create_template(vault_id, "Push Day")
    api.template_service.add_existing_exercise(vault_id, template_id, bench, 3)
    api.template_service.add_existing_exercise(vault_id, template_id, plank, 2)
    session_id = api.session_service.start_session(vault_id, template_id)
    first_set = api.session_service.session_detail(vault_id, session_id)["entries"][0]["sets"][0]
    api.session_service.save_set(vault_id, session_id, first_set["id"], 8, 60)
    print(f"Demo vault {vault_id} created with session {session_id}")
    return vault_id


def export_sessions(db_path: str, yaml_path: str, vault_id: int, out_path: str) -> int:
    api = _api(db_path, yaml_path)
    sessions = [
        api.session_service.session_detail(vault_id, s["id"])
        for s in api.sessions.fetch_all_sessions(vault_id)
    ]
    with open(out_path, "w", encoding="utf-8") as f:
        json.dump(sessions, f, indent=2, default=str)
    return len(sessions)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Utility commands")
    sub = parser.add_subparsers(dest="cmd", required=True)

    def with_db(p: argparse.ArgumentParser, yaml: bool = False) -> argparse.ArgumentParser:
        p.add_argument("--db", default="workout.db")
        if yaml:
            p.add_argument("--yaml", default="settings.yaml")
        return p

    with_db(sub.add_parser("demo"), yaml=True)

    bkp = with_db(sub.add_parser("backup"))
    bkp.add_argument("--out", default="backup.db")

    rst = sub.add_parser("restore")
    rst.add_argument("--in", dest="src", default="backup.db")
    rst.add_argument("--db", default="workout.db")

    with_db(sub.add_parser("vacuum"))

    streak = with_db(sub.add_parser("streak"), yaml=True)
    streak.add_argument("--vault", type=int, required=True)

    analytics = with_db(sub.add_parser("analytics"), yaml=True)
    analytics.add_argument("--vault", type=int, required=True)
    analytics.add_argument("--kind", choices=["muscles", "tendons"], default="muscles")
    analytics.add_argument("--weeks", type=int, default=None)

    exp = with_db(sub.add_parser("export"), yaml=True)
    exp.add_argument("--vault", type=int, required=True)
    exp.add_argument("--out", default="sessions.json")

    serve = sub.add_parser("serve")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    args = parser.parse_args(argv)

    if args.cmd == "demo":
        demo_data(args.db, args.yaml)
    elif args.cmd == "backup":
        backup_db(args.db, args.out)
    elif args.cmd == "restore":
        restore_db(args.src, args.db)
    elif args.cmd == "vacuum":
        vacuum_db(args.db)
    elif args.cmd == "streak":
        api = _api(args.db, args.yaml)
        VaultRepository(args.db).fetch_detail(args.vault)
        data = api.session_service.adherence(args.vault)
        print(
            f"Streak: {data['streak']} day(s); this week: {data['week_count']} "
            f"(since {data['week_start']})"
        )
    elif args.cmd == "analytics":
        api = _api(args.db, args.yaml)
        data = api.analytics.analytics(args.vault, args.kind, args.weeks)
        window = data["window"]
        print(f"{args.kind} {window['from']}..{window['to']} sorted by {data['sort']}")
        for t in data["targets"]:
            print(f"  {t['name']}: sets={t['sets']} effective={t['effective_sets']:.2f}")
    elif args.cmd == "export":
        count = export_sessions(args.db, args.yaml, args.vault, args.out)
        logger.info("exported %d session(s) to %s", count, args.out)
    elif args.cmd == "serve":
        import uvicorn

        uvicorn.run("rest_api:app", host=args.host, port=args.port)


if __name__ == "__main__":
    main()
