"""세션/템플릿 관리와 재인코드 파이프라인."""
