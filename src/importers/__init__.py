from .json_importer import export_cases_json, parse_json_cases
from .spreadsheet import parse_spreadsheet

__all__ = ["export_cases_json", "parse_json_cases", "parse_spreadsheet"]
