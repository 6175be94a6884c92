"""
Work order enumerations.
"""

import enum


class WorkOrderStatus(str, enum.Enum):
    """Work order lifecycle status (owned by the work-order subsystem)."""
    CREATED = "CREATED"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"  # Finished at the lab, billable
    DELIVERED = "DELIVERED"  # Handed to the dentist, billable


BILLABLE_ORDER_STATUSES = (WorkOrderStatus.DONE, WorkOrderStatus.DELIVERED)


class WorkType(str, enum.Enum):
    """Kind of prosthetic work; keys of the price table."""
    PROTESIS = "PROTESIS"
    CORONA_ZIRCONIA = "CORONA_ZIRCONIA"
    CORONA_A_PERNO = "CORONA_A_PERNO"
    MODELO_IMPRESO = "MODELO_IMPRESO"
    TERMINACION_1_A_5 = "TERMINACION_1_A_5"
    TERMINACION_6_A_10 = "TERMINACION_6_A_10"
    REPARACION = "REPARACION"
    PROVISORIO = "PROVISORIO"
    GANCHO_LABRADO = "GANCHO_LABRADO"
