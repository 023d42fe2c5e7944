#!/usr/bin/env python3
"""
Собирает config.json sing-box из текущей БД (активные аккаунты + включённые инбаунды).

Использование:
  python scripts/gen_config.py                 # вывести конфиг в stdout
  python scripts/gen_config.py --apply         # записать в SINGBOX_CONFIG_PATH и перезагрузить sing-box
  python scripts/gen_config.py -o config.json  # записать в файл, без reload
"""
import argparse
import logging
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from db.crud import list_active_accounts, list_enabled_inbounds
from db.session import SessionLocal
from services.exceptions import SynthesisError
from services.reload import ReloadStatus, apply_config
from services.singbox import render, synthesize


def main():
    parser = argparse.ArgumentParser(description="Сгенерировать config.json для sing-box")
    parser.add_argument("--apply", action="store_true", help="Записать конфиг и перезагрузить sing-box")
    parser.add_argument("-o", "--output", help="Записать в файл вместо stdout")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(name)s: %(message)s")

    db = SessionLocal()
    try:
        if args.apply:
            outcome = apply_config(db)
            print(f"Результат: {outcome.status.value}" + (f" ({outcome.error})" if outcome.error else ""))
            return 0 if outcome.status is ReloadStatus.WRITTEN else 1

        try:
            document = synthesize(list_active_accounts(db), list_enabled_inbounds(db))
        except SynthesisError as e:
            print(f"Ошибка сборки конфига: {e}", file=sys.stderr)
            return 1
    finally:
        db.close()

    text = render(document)
    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            f.write(text + "\n")
        print(f"Конфиг записан: {args.output}")
    else:
        print(text)
    return 0


if __name__ == "__main__":
    sys.exit(main())
