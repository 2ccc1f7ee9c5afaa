"""점검용 명령행 도구."""
