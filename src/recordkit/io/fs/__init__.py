from .retention import check_name_matches, delete_files_older_than

__all__ = ["check_name_matches", "delete_files_older_than"]
