# src/spc_explorer/run_report.py
from typing import Optional, Sequence
import os
import yaml
from spc_explorer import charts

def run_report(cfg_path: Optional[str] = "spc_config.yaml", workbook: Optional[str] = None,
               sheets: Optional[Sequence[str]] = None):
    cfg = {}
    if cfg_path and os.path.exists(cfg_path):
        with open(cfg_path, "r", encoding="utf-8") as f:
            cfg = yaml.safe_load(f) or {}
    elif cfg_path:
        print(f"config not found: {cfg_path} (using defaults)")
    return charts.run_from_config(cfg, workbook=workbook, sheets=sheets)

def main(argv=None) -> None:
    import argparse
    parser = argparse.ArgumentParser(description="SPC trend / capability report for an Excel workbook")
    parser.add_argument("--cfg", default="spc_config.yaml", help="path to YAML config")
    parser.add_argument("--workbook", help="overrides 'workbook' in the config, e.g., data/line1.xlsx")
    parser.add_argument("--sheet", action="append", dest="sheets", help="sheet to load; repeat for several")
    args = parser.parse_args(argv)
    run_report(args.cfg, args.workbook, args.sheets)

if __name__ == "__main__":
    main()
