def _top(db, field: str, limit: int) -> list:
    pipeline = [
        {"$group": {"_id": f"${field}", "count": {"$sum": 1}}},
        {"$sort": {"count": -1}},
        {"$limit": limit},
    ]
    return list(db["internship"].aggregate(pipeline))


def dashboard_stats(db) -> dict:
    """Point-in-time counts over all internship records for the coordinator dashboard."""
    coll = db["internship"]
    stipend = list(coll.aggregate([
        {"$group": {"_id": None, "avgStipend": {"$avg": "$stipend"}, "maxStipend": {"$max": "$stipend"}}},
    ]))
    stipend_stats = {"avgStipend": 0, "maxStipend": 0}
    if stipend:
        stipend_stats = {
            "avgStipend": stipend[0].get("avgStipend") or 0,
            "maxStipend": stipend[0].get("maxStipend") or 0,
        }

    return {
        "totalInternships": coll.count_documents({}),
        "byType": {
            "academic": coll.count_documents({"internshipType": "Academic"}),
            "industry": coll.count_documents({"internshipType": "Industry"}),
        },
        "bySource": {
            "cdc": coll.count_documents({"obtainedThroughCDC": True}),
            "nonCdc": coll.count_documents({"obtainedThroughCDC": False}),
        },
        "byLocation": {
            "india": coll.count_documents({"internshipLocation": "India"}),
            "abroad": coll.count_documents({"internshipLocation": "Abroad"}),
        },
        "byVerification": {
            "verified": coll.count_documents({"verified": True}),
            "unverified": coll.count_documents({"verified": False}),
        },
        "byBatch": _top(db, "batch", 5),
        "byCompany": _top(db, "companyName", 10),
        "stipendStats": stipend_stats,
    }
