"""MongoDB document serialization utilities."""

from bson import ObjectId


def serialize_doc(doc):
    """Convert MongoDB document to a plain dict without Mongo's _id"""
    if doc is None:
        return None
    if isinstance(doc, ObjectId):
        return str(doc)
    if isinstance(doc, list):
        return [serialize_doc(d) for d in doc]
    if isinstance(doc, dict):
        result = {}
        for key, value in doc.items():
            if key == "_id":
                continue
            elif isinstance(value, (ObjectId, dict, list)):
                result[key] = serialize_doc(value)
            else:
                result[key] = value
        return result
    return doc
