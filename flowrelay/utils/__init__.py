"""설정과 로깅."""
