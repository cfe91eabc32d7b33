"""ORM models."""

from payrun_engine.enums import (
    OPEN_LOAN_STATUSES,
    AllowanceFrequency,
    DeductionType,
    EmployeeStatus,
    LoanStatus,
    PayrunLineType,
    PayrunStatus,
    PayrunType,
    RepaymentStatus,
)
from payrun_engine.models.base import Base
from payrun_engine.models.compensation import (
    Allowance,
    Deduction,
    EmployeeAllowance,
    EmployeeDeduction,
    EmployeeSalary,
    SalaryStructure,
    SalaryStructureAllowance,
    SalaryStructureDeduction,
)
from payrun_engine.models.employee import Employee, EmployeeBankAccount
from payrun_engine.models.loans import (
    LoanApplication,
    LoanHistory,
    LoanRepayment,
    LoanType,
    LoanTypeSalaryStructure,
)
from payrun_engine.models.payroll import (
    Payrun,
    PayrunItem,
    PayrunItemDetail,
    build_period_key,
)

__all__ = [
    # Base
    "Base",
    # Enumerations
    "OPEN_LOAN_STATUSES",
    "AllowanceFrequency",
    "DeductionType",
    "EmployeeStatus",
    "LoanStatus",
    "PayrunLineType",
    "PayrunStatus",
    "PayrunType",
    "RepaymentStatus",
    # Employee
    "Employee",
    "EmployeeBankAccount",
    # Compensation
    "Allowance",
    "Deduction",
    "EmployeeAllowance",
    "EmployeeDeduction",
    "EmployeeSalary",
    "SalaryStructure",
    "SalaryStructureAllowance",
    "SalaryStructureDeduction",
    # Payroll
    "Payrun",
    "PayrunItem",
    "PayrunItemDetail",
    "build_period_key",
    # Loans
    "LoanApplication",
    "LoanHistory",
    "LoanRepayment",
    "LoanType",
    "LoanTypeSalaryStructure",
]
