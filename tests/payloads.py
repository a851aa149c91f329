from typing import Any, Dict, List, Optional

BASE_URL = "https://ioda.test/v2"


def series_dict(
    datasource: str,
    values: List[Optional[float]],
    start: int = 1000,
    step: int = 300,
    entity_type: str = "country",
    entity_code: str = "VE",
) -> Dict[str, Any]:
    return {
        "entityType": entity_type,
        "entityCode": entity_code,
        "datasource": datasource,
        "from": start,
        "until": start + step * len(values),
        "step": step,
        "values": values,
    }


def signals_envelope(*series: Dict[str, Any]) -> Dict[str, Any]:
    return {"data": [list(series)]}
