from dataclasses import dataclass, field

from datamall.sources import table_specs as specs


@dataclass
class DatasetUpdateConfig:
    dataset_id: str
    dataset_name: str
    update_cron: str
    full_update_cron: str
    # Names in table_specs.TABLE_SPECS_BY_NAME, updated in order.
    table_names: list[str] = field(default_factory=list)


###############################################################################
#                        LTA DATAMALL: VEHICLE REGISTRATION                   #
###############################################################################

CARS_UPDATE_CONFIG = DatasetUpdateConfig(
    dataset_id="lta_cars",
    dataset_name=specs.CARS.target_table,
    update_cron="0 10 * * 1-5",
    full_update_cron="0 10 1 * *",
    table_names=[specs.CARS.name],
)

DEREGISTRATIONS_UPDATE_CONFIG = DatasetUpdateConfig(
    dataset_id="lta_deregistrations",
    dataset_name=specs.DEREGISTRATIONS.target_table,
    update_cron="15 10 * * 1-5",
    full_update_cron="15 10 1 * *",
    table_names=[specs.DEREGISTRATIONS.name],
)

CAR_POPULATION_UPDATE_CONFIG = DatasetUpdateConfig(
    dataset_id="lta_car_population",
    dataset_name=specs.CAR_POPULATION.target_table,
    update_cron="30 10 * * 1",
    full_update_cron="30 10 1 1 *",
    table_names=[specs.CAR_POPULATION.name],
)

VEHICLE_POPULATION_UPDATE_CONFIG = DatasetUpdateConfig(
    dataset_id="lta_vehicle_population",
    dataset_name=specs.VEHICLE_POPULATION.target_table,
    update_cron="45 10 * * 1",
    full_update_cron="45 10 1 1 *",
    table_names=[specs.VEHICLE_POPULATION.name],
)


###############################################################################
#                        LTA DATAMALL: COE BIDDING                            #
###############################################################################

# Both tables come from the same archive; results before premium quota.
COE_UPDATE_CONFIG = DatasetUpdateConfig(
    dataset_id="lta_coe",
    dataset_name=specs.COE.target_table,
    update_cron="0 */2 * * 1-5",
    full_update_cron="0 20 1 * *",
    table_names=[specs.COE.name, specs.COE_PQP.name],
)


ALL_UPDATE_CONFIGS = [
    CARS_UPDATE_CONFIG,
    DEREGISTRATIONS_UPDATE_CONFIG,
    CAR_POPULATION_UPDATE_CONFIG,
    VEHICLE_POPULATION_UPDATE_CONFIG,
    COE_UPDATE_CONFIG,
]
