import math
import os
import pickle

import numpy as np
import pandas as pd
import anndata as ad
import matplotlib.pyplot as plt
import matplotlib.patches as mpatches
import matplotlib.gridspec as gridspec
import seaborn as sns
import gseapy as gp
from gseapy.plot import dotplot
from pydeseq2.dds import DeseqDataSet
from scipy.spatial.distance import pdist, squareform
from scipy.cluster.hierarchy import dendrogram
from sklearn.preprocessing import scale
from statsmodels.robust.scale import mad

from PsychWGCNA.countData import CountData
from PsychWGCNA.network import Network, drawColors
from PsychWGCNA.linearModel import LinearModel

# remove runtime warning (divided by zero)
np.seterr(divide='ignore', invalid='ignore')

plt.rcParams["axes.edgecolor"] = "black"
plt.rcParams["axes.linewidth"] = 1

# bcolors
HEADER = '\033[95m'
OKBLUE = '\033[94m'
OKCYAN = '\033[96m'
OKGREEN = '\033[92m'
WARNING = '\033[93m'
FAIL = '\033[91m'
ENDC = '\033[0m'
BOLD = '\033[1m'
UNDERLINE = '\033[4m'


class WGCNA(CountData):
    """
    A class used to do weighted gene co-expression network analysis on RNA-seq counts and relate the modules to
    clinical covariates.

    :param name: name of the WGCNA we used to visualize data (default: 'WGCNA')
    :type name: str
    :param countPath: path of count matrix
    :type countPath: str
    :param counts: count matrix
    :type counts: pandas dataframe
    :param anndata: count data as anndata (samples x genes)
    :type anndata: anndata
    :param sep: separation symbol used to read countPath and sampleInfoPath (default: ',')
    :type sep: str
    :param countOrientation: 'genes' if genes are in the rows of the count table, 'samples' otherwise (default: 'genes')
    :type countOrientation: str
    :param sampleInfoPath: path of sample information (meta data)
    :type sampleInfoPath: str
    :param sampleInfo: sample information (meta data)
    :type sampleInfo: pandas dataframe
    :param sampleIdColumn: column of sample information that contains sample IDs (default: 'sample_id')
    :type sampleIdColumn: str
    :param geneInfo: gene information, gene IDs as index
    :type geneInfo: pandas dataframe
    :param minCount: minimum count a gene should reach in minSampleFraction of the samples to be kept (default: 10)
    :type minCount: int
    :param minSampleFraction: fraction of samples in which a gene should reach minCount (default: 0.5)
    :type minSampleFraction: float
    :param normalization: normalization of counts, 'vst', 'log2cpm' or None if counts are already normalized (default: 'vst')
    :type normalization: str
    :param vstFitType: type of the dispersion trend used by the variance stabilizing transformation, 'parametric' or 'mean' (default: 'parametric')
    :type vstFitType: str
    :param nTopGenes: number of the most variable genes to keep after normalization (default: None, keep all)
    :type nTopGenes: int
    :param topGenesMethod: variability measure used to rank genes, 'mad' or 'var' (default: 'mad')
    :type topGenesMethod: str
    :param cut: number to remove outlier sample (default: 'inf') By default we don't remove any sample by hierarchical clustering
    :type cut: float
    :param powers: different powers to test to have scale free network (default: [1:10, 12:20:2])
    :type powers: list of int
    :param RsquaredCut: signed R squared cut to choose power for having scale free network; between 0 to 1 (default: 0.85)
    :type RsquaredCut: float
    :param MeanCut: mean connectivity to choose power for having scale free network (default: 100)
    :type MeanCut: int
    :param power: power to have scale free network (default: None, chosen by pickSoftThreshold)
    :type power: int
    :param networkType: Type of network we can create including "unsigned", "signed" and "signed hybrid" (default: "signed")
    :type networkType: str
    :param TOMType: Type of topological overlap matrix(TOM) including "unsigned", "signed" (default: "signed")
    :type TOMType: str
    :param TOMDenom: "min" or "mean" denominator of the topological overlap (default: "min")
    :type TOMDenom: str
    :param maxBlockSize: maximum number of genes in each block of the network (default: 5000)
    :type maxBlockSize: int
    :param minModuleSize: We like large modules, so we set the minimum module size relatively high (default: 30)
    :type minModuleSize: int
    :param deepSplit: sensitivity of the hybrid tree cut, 0 to 4 (default: 2)
    :type deepSplit: int
    :param pamRespectsDendro: should the PAM stage of the tree cut respect the dendrogram (default: True)
    :type pamRespectsDendro: bool
    :param minKMEtoStay: genes whose module membership is lower than this value are unassigned (default: 0.3)
    :type minKMEtoStay: float
    :param minCoreKME: module core membership threshold (default: 0.5)
    :type minCoreKME: float
    :param minCoreKMESize: minimum number of genes above minCoreKME in a module (default: minModuleSize/3)
    :type minCoreKMESize: int
    :param MEDissThres: diss similarity threshold for merging modules (default: 0.25)
    :type MEDissThres: float
    :param naColor: color we used to identify genes we don't find any cluster for them (default: "grey")
    :type naColor: str
    :param covariates: sample information columns used in the linear model of eigengenes (default: ['diagnosis', 'ethnicity'])
    :type covariates: list of str
    :param referenceLevels: reference level of each categorical covariate (default: {'diagnosis': 'Control'})
    :type referenceLevels: dict
    :param pValueCutoff: adjusted p-value cutoff used to report and mark significant results (default: 0.05)
    :type pValueCutoff: float
    :param save: indicate if you want to save result of important steps in a figure directory (default: False)
    :type save: bool
    :param outputPath: path you want to save all you figures and object (default: '', where you rau your script)
    :type outputPath: str
    :param figureType: extension of the figures (default: 'png')
    :type figureType: str
    :param seed: seed of the k-means pre-clustering of genes into blocks (default: 12345)
    :type seed: int
    """

    def __init__(self, name='WGCNA',
                 countPath=None, counts=None, anndata=None, sep=',', countOrientation='genes',
                 sampleInfoPath=None, sampleInfo=None, sampleIdColumn='sample_id', geneInfo=None,
                 minCount=10, minSampleFraction=0.5, normalization='vst', vstFitType='parametric',
                 nTopGenes=None, topGenesMethod='mad', cut=float('inf'),
                 powers=None, RsquaredCut=0.85, MeanCut=100, power=None,
                 networkType="signed", TOMType="signed", TOMDenom="min",
                 maxBlockSize=5000, minModuleSize=30, deepSplit=2, pamRespectsDendro=True,
                 minKMEtoStay=0.3, minCoreKME=0.5, minCoreKMESize=None,
                 MEDissThres=0.25, naColor="grey",
                 covariates=None, referenceLevels=None, pValueCutoff=0.05,
                 save=False, outputPath=None, figureType='png', seed=12345):

        super().__init__(anndata=anndata, counts=counts, countPath=countPath, sep=sep,
                         countOrientation=countOrientation, geneInfo=geneInfo, sampleInfo=sampleInfo,
                         sampleIdColumn=sampleIdColumn)
        if sampleInfoPath is not None:
            self.updateSampleInfo(path=sampleInfoPath, sep=sep)

        if powers is None:
            powers = list(range(1, 11)) + list(range(12, 21, 2))
        if covariates is None:
            covariates = ['diagnosis', 'ethnicity']
        if referenceLevels is None:
            referenceLevels = {'diagnosis': 'Control'}
        if normalization not in ['vst', 'log2cpm', None]:
            raise ValueError("normalization should be 'vst', 'log2cpm' or None!")
        if topGenesMethod not in ['mad', 'var']:
            raise ValueError("topGenesMethod should be 'mad' or 'var'!")

        self.name = name

        self.save = save
        self.outputPath = os.getcwd() if outputPath is None else outputPath
        self.figureType = figureType

        self.minCount = minCount
        self.minSampleFraction = minSampleFraction
        self.normalization = normalization
        self.vstFitType = vstFitType
        self.nTopGenes = nTopGenes
        self.topGenesMethod = topGenesMethod
        self.cut = cut

        self.datExpr = self.geneExpr.copy()
        self.preprocessSummary = None
        self.sampleTree = None

        self.metadata_colors = {}
        self.datTraits = None

        self.networkType = networkType

        # Choose a set of soft-thresholding powers
        self.RsquaredCut = RsquaredCut
        self.MeanCut = MeanCut
        self.powers = powers
        self.power = power
        self.sft = None

        self.TOMType = TOMType
        self.TOMDenom = TOMDenom
        self.maxBlockSize = maxBlockSize
        self.minModuleSize = minModuleSize
        self.deepSplit = deepSplit
        self.pamRespectsDendro = pamRespectsDendro
        self.minKMEtoStay = minKMEtoStay
        self.minCoreKME = minCoreKME
        self.minCoreKMESize = minCoreKMESize
        self.naColor = naColor
        self.MEDissThres = MEDissThres
        self.seed = seed

        self.blocks = None
        self.geneTrees = None
        self.blockGenes = None
        self.MEs = None
        self.datME = None
        self.kME = None

        self.moduleTraitCor = None
        self.moduleTraitPvalue = None

        self.covariates = covariates
        self.referenceLevels = referenceLevels
        self.pValueCutoff = pValueCutoff
        self.design = None
        self.fit = None
        self.limmaResults = None

        if self.save:
            print(f"{OKGREEN}Saving data to be True, checking requirements ...{ENDC}")
            if not os.path.exists(self.outputPath + '/figures/'):
                print(f"{WARNING}Figure directory does not exist!\nCreating figure directory!{ENDC}")
                os.makedirs(self.outputPath + '/figures/')

    def preprocess(self):
        """
        Filter lowly expressed genes, normalize counts, remove genes and samples with too many missing values and
        outlier samples
        """
        print(f"{BOLD}{OKBLUE}Pre-processing...{ENDC}")

        counts = self.geneExpr.to_df()
        summary = {'nSamplesInput': counts.shape[0], 'nGenesInput': counts.shape[1]}

        print(f"{OKCYAN}Removing genes with less than {self.minCount} counts in "
              f"{self.minSampleFraction * 100}% of samples ...{ENDC}")
        counts = WGCNA.filterCounts(counts, minCount=self.minCount, minSampleFraction=self.minSampleFraction)
        summary['nGenesExpressed'] = counts.shape[1]
        print(f"{OKGREEN}{counts.shape[1]} out of {summary['nGenesInput']} genes kept.{ENDC}")
        print("\tDone..\n")

        if self.normalization == 'vst':
            print(f"{OKCYAN}Variance stabilizing transformation ...{ENDC}")
            datExpr = WGCNA.vst(counts, fitType=self.vstFitType)
            print("\tDone..\n")
        elif self.normalization == 'log2cpm':
            print(f"{OKCYAN}log2 counts per million ...{ENDC}")
            datExpr = WGCNA.log2cpm(counts)
            print("\tDone..\n")
        else:
            datExpr = counts.astype(float)

        # Check that all genes and samples have sufficiently low numbers of missing values.
        goodGenes, goodSamples, allOK = Network.goodSamplesGenes(datExpr)
        # if not okay
        if not allOK:
            if np.count_nonzero(~goodGenes) > 0:
                print(f"{OKGREEN} {np.count_nonzero(~goodGenes)} gene(s) detected as an outlier!{ENDC}")
                print(f"{OKGREEN}Removing genes: {datExpr.columns[~goodGenes].values}{ENDC}")
            if np.count_nonzero(~goodSamples) > 0:
                print(f"{OKGREEN} {np.count_nonzero(~goodSamples)} sample(s) detected as an outlier!{ENDC}")
                print(f"{OKGREEN}Removing samples: {datExpr.index[~goodSamples].values}{ENDC}")
            # Remove the offending genes and samples from the data:
            datExpr = datExpr.loc[goodSamples, goodGenes]
        summary['nGenesGood'] = datExpr.shape[1]
        summary['nSamplesGood'] = datExpr.shape[0]

        # Clustering
        self.sampleTree = Network.hclust(pdist(datExpr), method="average")
        self.plotSampleTree(labels=datExpr.index)

        # Determine cluster under the line
        keepSamples = WGCNA.cutSampleTree(self.sampleTree, cutHeight=self.cut)
        if not keepSamples.all():
            print(f"{OKGREEN} {np.count_nonzero(~keepSamples)} sample(s) detected as an outlier by "
                  f"hierarchical clustering!{ENDC}")
            print(f"{OKGREEN}Removing samples: {datExpr.index[~keepSamples].values}{ENDC}")
        datExpr = datExpr.loc[keepSamples, :]
        summary['nSamplesKept'] = datExpr.shape[0]

        if self.nTopGenes is not None:
            print(f"{OKCYAN}Selecting {self.nTopGenes} most variable genes by {self.topGenesMethod} ...{ENDC}")
            datExpr = WGCNA.selectTopGenes(datExpr, n=self.nTopGenes, method=self.topGenesMethod)
            print("\tDone..\n")
        summary['nGenesKept'] = datExpr.shape[1]

        self.datExpr = ad.AnnData(X=datExpr.values,
                                  obs=self.geneExpr.obs.loc[datExpr.index, :].copy(),
                                  var=self.geneExpr.var.loc[datExpr.columns, :].copy())
        self.preprocessSummary = summary

        print("\tDone pre-processing..\n")

    @staticmethod
    def filterCounts(counts, minCount=10, minSampleFraction=0.5):
        """
        keep genes with at least minCount counts in at least minSampleFraction of the samples

        :param counts: count matrix, samples in rows and genes in columns
        :type counts: pandas dataframe
        """
        minSamples = math.ceil(minSampleFraction * counts.shape[0])
        keep = (counts >= minCount).sum(axis=0) >= minSamples
        if keep.sum() == 0:
            raise ValueError(f"there is no gene with at least {minCount} counts in {minSamples} samples!")
        return counts.loc[:, keep]

    @staticmethod
    def vst(counts, fitType='parametric'):
        """
        blind variance stabilizing transformation of counts (samples x genes) with pydeseq2
        """
        counts = counts.round().astype(int)
        metadata = pd.DataFrame({'condition': ['A'] * counts.shape[0]}, index=counts.index)

        dds = DeseqDataSet(counts=counts, metadata=metadata, design="~1", quiet=True)
        dds.vst(use_design=False, fit_type=fitType)

        return pd.DataFrame(np.asarray(dds.layers["vst_counts"]), index=counts.index, columns=counts.columns)

    @staticmethod
    def log2cpm(counts, prior=1):
        libSize = counts.sum(axis=1)
        return np.log2(counts.add(prior).div(libSize + 2 * prior, axis=0) * 1e6)

    @staticmethod
    def cutSampleTree(sampleTree, cutHeight=float('inf')):
        """
        return which samples belong to the biggest cluster under cutHeight
        """
        clust = Network.cutree(sampleTree, cutHeight=cutHeight)[:, 0]
        return clust == np.bincount(clust).argmax()

    @staticmethod
    def selectTopGenes(datExpr, n, method='mad'):
        """
        keep n most variable genes, in their original order
        """
        if n >= datExpr.shape[1]:
            return datExpr
        if method == 'mad':
            variability = mad(datExpr.values, axis=0)
        elif method == 'var':
            variability = np.var(datExpr.values, axis=0, ddof=1)
        else:
            raise ValueError("method should be 'mad' or 'var'!")
        top = np.sort(np.argsort(-variability, kind='stable')[:n])
        return datExpr.iloc[:, top]

    def findModules(self):
        print(f"{BOLD}{OKBLUE}Run WGCNA...{ENDC}")

        datExpr = self.datExpr.to_df()

        # Call the network topology analysis function
        powerEstimate, self.sft = Network.pickSoftThreshold(datExpr, RsquaredCut=self.RsquaredCut,
                                                            MeanCut=self.MeanCut, powerVector=self.powers,
                                                            networkType=self.networkType)
        if self.power is None:
            self.power = powerEstimate
        else:
            print(f"{OKGREEN}Using given power {self.power}.{ENDC}")
        self.plotSoftThreshold()

        blockwise = Network.blockwiseModules(datExpr, power=self.power, networkType=self.networkType,
                                             TOMType=self.TOMType, TOMDenom=self.TOMDenom,
                                             maxBlockSize=self.maxBlockSize, minModuleSize=self.minModuleSize,
                                             deepSplit=self.deepSplit, pamRespectsDendro=self.pamRespectsDendro,
                                             minCoreKME=self.minCoreKME, minCoreKMESize=self.minCoreKMESize,
                                             minKMEtoStay=self.minKMEtoStay, mergeCutHeight=self.MEDissThres,
                                             naColor=self.naColor, seed=self.seed)

        self.blocks = blockwise['blocks']
        self.geneTrees = blockwise['dendrograms']
        self.blockGenes = blockwise['blockGenes']

        self.datExpr.var['dynamicColors'] = blockwise['unmergedColors']
        # The merged module colors
        self.datExpr.var['moduleColors'] = blockwise['colors']
        # Construct numerical labels corresponding to the colors
        self.datExpr.var['moduleLabels'] = Network.colors2labels(self.datExpr.var['moduleColors'].values,
                                                                naColor=self.naColor)
        self.datExpr.var['block'] = self.blocks

        if blockwise['MEs'] is None or blockwise['MEs'].shape[1] == 0:
            print(f"{WARNING}No module detected! all genes are assigned to {self.naColor}.{ENDC}")
            self.MEs = pd.DataFrame(index=datExpr.index)
        else:
            self.MEs = Network.orderMEs(blockwise['MEs'], greyName="ME" + self.naColor)
        self.datME = self.MEs

        if self.MEs.shape[1] > 0:
            self.kME = Network.signedKME(datExpr, self.MEs)
        else:
            self.kME = pd.DataFrame(index=datExpr.columns)
        self.datExpr.var['kME'] = [self.kME.loc[gene, 'kME' + color] if 'kME' + color in self.kME.columns
                                   else np.nan
                                   for gene, color in zip(self.datExpr.var_names, self.datExpr.var['moduleColors'])]

        self.plotDendroAndColors()
        self.plotEigengeneNetwork()

        print(f"{OKGREEN}{len(self.getModuleName())} module(s) found: {self.getModuleName()}{ENDC}")
        print("\tDone running WGCNA..\n")

    def runWGCNA(self):
        WGCNA.preprocess(self)

        WGCNA.findModules(self)

        return self

    def analyseWGCNA(self, order=None, geneList=None):
        """
        Relate modules to sample information: module-trait correlations, linear model of eigengenes on the
        covariates and figures

        :param order: sample information columns shown (in this order) in module eigengene figures (default: all columns with metadata colors)
        :type order: list of str
        :param geneList: gene information to add to the genes of the analysis, gene IDs as index
        :type geneList: pandas dataframe
        """
        print(f"{BOLD}{OKBLUE}Analysing WGCNA...{ENDC}")

        if self.MEs is None:
            raise ValueError("No module found! call findModules or runWGCNA first.")

        self.updateDatTraits()
        self.moduleTraitRelationship()
        self.fitCovariateModel()

        if geneList is not None:
            print(f"{OKCYAN}Adding gene name to gene information of data...{ENDC}")
            var = self.datExpr.var.drop(columns=self.datExpr.var.columns.intersection(geneList.columns))
            self.datExpr.var = var.join(geneList, how='left')
            print("\tDone..\n")

        self.plotEigengeneHeatmap()

        if self.save:
            print(f"{OKCYAN}plotting module heatmap eigengene...{ENDC}")
            metadata = list(self.metadata_colors.keys())
            if order is not None:
                if all(item in self.datExpr.obs.columns for item in order):
                    metadata = order
                else:
                    raise ValueError("Given order is not valid!")
            if len(metadata) == 0:
                print(f"{WARNING}No metadata color is set, use setMetadataColor to plot module eigengenes "
                      f"along sample information.{ENDC}")
            else:
                for module in self.getModuleName():
                    if module != self.naColor:
                        self.plotModuleEigenGene(module, metadata)
            print("\tDone..\n")

        return self

    def updateDatTraits(self):
        """
        update data trait module base on samples
        binary traits become 0/1, traits with more than two levels are one-hot encoded and numeric traits are kept
        """
        sampleInfo = self.datExpr.obs
        self.datTraits = pd.DataFrame(index=sampleInfo.index)
        for col in sampleInfo.columns:
            values = sampleInfo[col]
            levels = np.unique(values.dropna().astype(str))
            if len(levels) < 2:
                continue
            if pd.api.types.is_numeric_dtype(values) and not pd.api.types.is_bool_dtype(values) and len(levels) > 2:
                self.datTraits[col] = values.astype(float)
            elif len(levels) == 2:
                self.datTraits[col] = values.astype(str).map({levels[0]: 0, levels[1]: 1}).where(values.notnull())
            elif len(levels) < values.notnull().sum():
                for level in levels:
                    # prefixed so that levels shared by two columns stay apart
                    self.datTraits[f"{col}{level}"] = (values.astype(str) == level).astype(float) \
                        .where(values.notnull())

    def moduleTraitRelationship(self):
        print(f"{OKCYAN}Calculating module trait relationship ...{ENDC}")
        if self.datTraits is None:
            self.updateDatTraits()
        if self.datTraits.shape[1] == 0 or self.MEs.shape[1] == 0:
            print(f"{WARNING}No trait or module to relate!{ENDC}")
            return None
        # Define numbers of samples
        nSamples = self.MEs.shape[0]
        cor = pd.concat([self.MEs, self.datTraits], axis=1).corr()
        self.moduleTraitCor = cor.loc[self.MEs.columns, self.datTraits.columns]
        self.moduleTraitPvalue = Network.corPvalue(self.moduleTraitCor, nSamples)

        self.plotModuleTraitHeatmap()
        print("\tDone..\n")

    def fitCovariateModel(self):
        """
        Fit the module eigengenes on the covariates with a linear model and empirical Bayes moderation
        """
        if self.MEs.shape[1] == 0:
            print(f"{WARNING}No module to fit on the covariates!{ENDC}")
            return None
        print(f"{OKCYAN}Fitting module eigengenes on {self.covariates} ...{ENDC}")
        self.design = LinearModel.designMatrix(self.datExpr.obs, covariates=self.covariates,
                                               referenceLevels=self.referenceLevels)
        Y = self.MEs.loc[self.design.index, :].T
        self.fit = LinearModel.lmFit(Y, self.design).eBayes()

        self.limmaResults = {}
        for coef in self.fit.resolveCoef():
            self.limmaResults[coef] = self.fit.topTable(coef=coef, sortBy="none")
            nSig = np.sum(self.limmaResults[coef]['adj.P.Val'] < self.pValueCutoff)
            print(f"{OKGREEN}{coef}: {nSig} module(s) with adjusted p-value < {self.pValueCutoff}{ENDC}")
        for cov in self.covariates:
            if cov not in self.limmaResults and len(self.fit.covariateColumns.get(cov, [])) > 1:
                self.limmaResults[cov] = self.fit.topTable(coef=cov, sortBy="none")

        self.plotCovariateHeatmap()
        print("\tDone..\n")

    def getModuleName(self):
        return np.unique(self.datExpr.var['moduleColors']).tolist()

    def getGeneModule(self, moduleName):
        """
        return genes information of given module(s)
        """
        if isinstance(moduleName, str):
            moduleName = [moduleName]
        output = {}
        moduleColors = self.getModuleName()
        for color in moduleName:
            if color not in moduleColors:
                print(f"{WARNING}Module name {color} does not exist in {self.name}{ENDC}")
                continue
            output[color] = self.datExpr.var[self.datExpr.var['moduleColors'] == color]
        if len(output) == 0:
            return None
        return output

    def getModulesGene(self, geneIds):
        """
        return module of given gene(s)
        """
        if isinstance(geneIds, str):
            geneIds = [geneIds]

        missing = [gene for gene in geneIds if gene not in self.datExpr.var_names]
        if len(missing) > 0:
            print(f"{WARNING}Gene(s) {missing} do not exist in {self.name}{ENDC}")
            return None
        modules = self.datExpr.var.loc[geneIds, 'moduleColors'].tolist()

        if len(modules) == 1:
            modules = modules[0]

        return modules

    def top_n_hub_genes(self, moduleName, n=10):
        """
        return the n genes of a module with the highest intramodular connectivity
        """
        if moduleName not in self.getModuleName():
            print(f"{WARNING}Module name {moduleName} does not exist in {self.name}{ENDC}")
            return None
        genes = self.datExpr.var_names[self.datExpr.var['moduleColors'] == moduleName]
        adjacency = Network.adjacency(self.datExpr.to_df().loc[:, genes], adjacencyType=self.networkType,
                                      power=self.power)
        adjacency = pd.DataFrame(adjacency, index=genes, columns=genes)
        connectivity = Network.intramodularConnectivity(adjacency, np.repeat(moduleName, len(genes)))
        hub = connectivity.sort_values('kWithin', ascending=False).head(n)
        return pd.concat([hub, self.datExpr.var.loc[hub.index, :]], axis=1)

    def setMetadataColor(self, col, cmap):
        """
        set colors of the values of a sample information column

        :param col: sample information column
        :type col: str
        :param cmap: color of each value
        :type cmap: dict
        """
        # check if obs_col is even there
        if col not in self.datExpr.obs.columns.tolist():
            print(f"{WARNING}Metadata column {col} not found!{ENDC}")
            return None
        self.metadata_colors[col] = cmap

    def saveWGCNA(self):
        """
        Saves the current WGCNA in pickle format with the .p extension
        """
        print(f"{BOLD}{OKBLUE}Saving WGCNA as {self.name}.p{ENDC}")

        with open(self.outputPath + '/' + self.name + '.p', 'wb') as picklefile:
            pickle.dump(self, picklefile)

    def exportResults(self):
        """
        Write gene modules, eigengenes, soft threshold table, module trait relationship and linear model tables
        as csv files in outputPath
        """
        print(f"{BOLD}{OKBLUE}Exporting results of {self.name}...{ENDC}")
        prefix = self.outputPath + '/' + self.name
        self.datExpr.var.to_csv(prefix + '_geneModules.csv')
        if self.MEs is not None:
            self.MEs.to_csv(prefix + '_eigengenes.csv')
        if self.sft is not None:
            self.sft.to_csv(prefix + '_softThreshold.csv', index=False)
        if self.moduleTraitCor is not None:
            self.moduleTraitCor.to_csv(prefix + '_moduleTraitCor.csv')
            self.moduleTraitPvalue.to_csv(prefix + '_moduleTraitPvalue.csv')
        if self.design is not None:
            self.design.to_csv(prefix + '_design.csv')
        if self.limmaResults is not None:
            for name, table in self.limmaResults.items():
                table.to_csv(prefix + '_limma_' + name + '.csv')
        print("\tDone..\n")

    def findGoTerm(self, moduleName, geneSets=None, organism='Human', geneNameColumn='gene_name'):
        """
        Gene ontology enrichment of a module with Enrichr (needs network access)

        :param moduleName: name of the module
        :type moduleName: str
        :param geneSets: Enrichr libraries (default: ['GO_Biological_Process_2021'])
        :type geneSets: list of str
        :param organism: organism of the genes (default: 'Human')
        :type organism: str
        :param geneNameColumn: gene information column that contains gene names; gene IDs are used if it is missing (default: 'gene_name')
        :type geneNameColumn: str
        """
        if geneSets is None:
            geneSets = ['GO_Biological_Process_2021']
        if moduleName not in self.getModuleName():
            print(f"{WARNING}Module name {moduleName} does not exist in {self.name}{ENDC}")
            return None

        if not os.path.exists(self.outputPath + '/figures/Go_term/'):
            print(f"{WARNING}Go_term directory does not exist!\nCreating Go_term directory!{ENDC}")
            os.makedirs(self.outputPath + '/figures/Go_term/')

        genes = self.datExpr.var[self.datExpr.var['moduleColors'] == moduleName]
        if geneNameColumn in genes.columns:
            geneList = genes[geneNameColumn].dropna().astype(str).tolist()
        else:
            geneList = genes.index.tolist()

        enr = gp.enrichr(gene_list=geneList,
                         gene_sets=geneSets,
                         organism=organism,
                         outdir=self.outputPath + '/figures/Go_term/' + moduleName,
                         cutoff=0.5)
        dotplot(enr.res2d,
                title="Gene ontology in " + moduleName + " module with " + str(genes.shape[0]) + " genes",
                cmap='viridis_r', cutoff=0.5,
                ofname=self.outputPath + '/figures/Go_term/' + moduleName + '.pdf')
        return enr.res2d

    def figurePath(self, name):
        return self.outputPath + '/figures/' + name + '.' + self.figureType

    @staticmethod
    def plotColor(color):
        # repeated colors carry a ".n" suffix
        color = str(color).split('.')[0]
        return drawColors.get(color, color)

    def plotSampleTree(self, sampleTree=None, labels=None):
        if sampleTree is None:
            sampleTree = self.sampleTree
        if labels is None:
            labels = self.datExpr.obs_names

        fig = plt.figure(figsize=(max(25, round(len(labels) / 20)), 10))
        dendrogram(sampleTree, color_threshold=self.cut, labels=list(labels), leaf_rotation=90,
                   leaf_font_size=8)
        if np.isfinite(self.cut):
            plt.axhline(y=self.cut, c='grey', lw=1, linestyle='dashed')
        plt.title('Sample clustering to detect outliers')
        plt.xlabel('Samples')
        plt.ylabel('Distances')
        plt.tight_layout()
        if self.save:
            fig.savefig(self.figurePath('sampleClusteringCleaning'))
        plt.close(fig)

    def plotSoftThreshold(self):
        signedRsq = -1 * np.sign(self.sft['slope']) * self.sft['SFT.R.sq']

        fig, ax = plt.subplots(ncols=2, figsize=(10, 5))
        ax[0].plot(self.sft['Power'], signedRsq, 'o')
        for i in range(self.sft.shape[0]):
            ax[0].text(self.sft.loc[i, 'Power'], signedRsq[i],
                       str(self.sft.loc[i, 'Power']), ha="center", va="center", color='black', weight='bold')
        ax[0].axhline(self.RsquaredCut, color='r')
        ax[0].set_xlabel("Soft Threshold (power)")
        ax[0].set_ylabel("Scale Free Topology Model Fit,signed R^2")
        ax[0].title.set_text('Scale independence')

        ax[1].plot(self.sft['Power'], self.sft['mean(k)'], 'o')
        for i in range(self.sft.shape[0]):
            ax[1].text(self.sft.loc[i, 'Power'], self.sft.loc[i, 'mean(k)'],
                       str(self.sft.loc[i, 'Power']), ha="center", va="center", color='r', weight='bold')
        ax[1].set_xlabel("Soft Threshold (power)")
        ax[1].set_ylabel("Mean Connectivity")
        ax[1].title.set_text('Mean connectivity')

        fig.tight_layout()
        if self.save:
            fig.savefig(self.figurePath('summarypower'))
        plt.close(fig)

    def plotDendroAndColors(self):
        """
        plot gene dendrogram of each block with the module colors before and after merging
        """
        for block, geneTree in self.geneTrees.items():
            genes = self.blockGenes[block]
            fig, axs = plt.subplots(nrows=2, figsize=(20, 8), gridspec_kw={'height_ratios': [4, 1]})
            leaves = dendrogram(geneTree, no_labels=True, color_threshold=0, above_threshold_color='black',
                                ax=axs[0])['leaves']
            axs[0].set_title(f"Gene dendrogram and module colors of block {block + 1}")
            axs[0].set_ylabel('Height')

            rows = [('Dynamic Tree Cut', 'dynamicColors'), ('Merged dynamic', 'moduleColors')]
            for i, (label, column) in enumerate(rows):
                colors = self.datExpr.var.loc[genes, column].values[leaves]
                axs[1].bar(np.arange(len(leaves)), 1, bottom=len(rows) - 1 - i, width=1,
                           color=[WGCNA.plotColor(c) for c in colors])
            axs[1].set_xlim(-0.5, len(leaves) - 0.5)
            axs[1].set_yticks([len(rows) - 0.5 - i for i in range(len(rows))])
            axs[1].set_yticklabels([label for label, column in rows])
            axs[1].set_xticks([])
            for spine in axs[1].spines.values():
                spine.set_visible(False)

            fig.tight_layout()
            if self.save:
                fig.savefig(self.figurePath(f"dendrogram_block{block + 1}"))
            plt.close(fig)

    def plotEigengeneNetwork(self):
        """
        plot eigengene dendrogram with the merging threshold and the eigengene adjacency heatmap
        """
        if self.MEs is None or self.MEs.shape[1] < 2:
            print(f"{WARNING}Less than two modules, eigengene network is not plotted.{ENDC}")
            return None

        MEDiss = pd.DataFrame(1 - np.corrcoef(self.MEs, rowvar=False), index=self.MEs.columns,
                              columns=self.MEs.columns)
        # Cluster module eigengenes
        METree = Network.hclust(squareform(MEDiss, checks=False), method="average")

        fig, axs = plt.subplots(ncols=2, figsize=(max(20, round(MEDiss.shape[1] / 2)), 10))
        leaves = dendrogram(METree, color_threshold=self.MEDissThres, labels=MEDiss.columns.tolist(),
                            leaf_rotation=90, leaf_font_size=8, ax=axs[0])['leaves']
        axs[0].axhline(y=self.MEDissThres, c='grey', lw=1, linestyle='dashed')
        axs[0].set_title('Clustering of module eigengenes')

        order = MEDiss.columns[leaves]
        sns.heatmap(1 - MEDiss.loc[order, order] / 2, cmap='RdBu_r', vmin=0, vmax=1, square=True, ax=axs[1])
        axs[1].set_title('Eigengene adjacency heatmap')

        fig.tight_layout()
        if self.save:
            fig.savefig(self.figurePath('eigengenes'))
        plt.close(fig)

    def plotModuleTraitHeatmap(self):
        fig, ax = plt.subplots(figsize=(max(8, self.moduleTraitPvalue.shape[0] * 1.5),
                                        max(6, self.moduleTraitPvalue.shape[1] * 1.5)))
        # names
        xlabels = [label[2:].capitalize() for label in self.MEs.columns]
        ylabels = self.datTraits.columns

        # Loop over data dimensions and create text annotations.
        tmp_cor = self.moduleTraitCor.T.round(decimals=2)
        tmp_pvalue = self.moduleTraitPvalue.T.round(decimals=3)
        labels = (np.asarray(["{0}\n({1})".format(cor, pvalue)
                              for cor, pvalue in zip(tmp_cor.values.flatten(),
                                                     tmp_pvalue.values.flatten())])) \
            .reshape(self.moduleTraitCor.T.shape)

        res = sns.heatmap(self.moduleTraitCor.T.astype(float), annot=labels, fmt="", cmap='RdBu_r',
                          vmin=-1, vmax=1, ax=ax, annot_kws={'size': 12, "weight": "bold"},
                          xticklabels=xlabels, yticklabels=ylabels)
        res.set_xticklabels(res.get_xmajorticklabels(), fontsize=14, fontweight="bold", rotation=45)
        res.set_yticklabels(res.get_ymajorticklabels(), fontsize=14, fontweight="bold", rotation=0)
        ax.set_title(f"Module-trait Relationships heatmap for {self.name}",
                     fontsize=20, fontweight="bold")
        fig.tight_layout()
        if self.save:
            fig.savefig(self.figurePath('Module-traitRelationships'))
        plt.close(fig)

    def plotCovariateHeatmap(self):
        """
        plot moderated t-statistics of each module and coefficient, stars mark adjusted p-values
        """
        if self.fit is None or self.limmaResults is None or self.MEs.shape[1] == 0:
            print(f"{WARNING}Covariate model is not fitted! call fitCovariateModel first.{ENDC}")
            return None
        coefs = self.fit.resolveCoef()
        if len(coefs) == 0:
            print(f"{WARNING}There is no covariate coefficient to plot.{ENDC}")
            return None
        tstat = self.fit.t.loc[:, coefs]
        adjP = pd.DataFrame({coef: self.limmaResults[coef].loc[tstat.index, 'adj.P.Val'] for coef in coefs})

        stars = np.where(adjP < 0.001, '***', np.where(adjP < 0.01, '**',
                                                        np.where(adjP < self.pValueCutoff, '*', '')))
        labels = np.asarray(["{0}\n{1}".format(round(value, 2), star)
                             for value, star in zip(tstat.values.flatten(), stars.flatten())]) \
            .reshape(tstat.shape)
        limit = max(np.nanmax(np.abs(tstat.values)), 1)

        fig, ax = plt.subplots(figsize=(max(6, len(coefs) * 2), max(6, tstat.shape[0] * 0.6)))
        sns.heatmap(tstat, annot=labels, fmt="", cmap='RdBu_r', center=0, vmin=-limit, vmax=limit, ax=ax,
                    yticklabels=[label[2:] for label in tstat.index], cbar_kws={'label': 'moderated t'})
        ax.set_title(f"Module eigengenes ~ {' + '.join(self.covariates)}", fontsize=16, fontweight="bold")
        fig.tight_layout()
        if self.save:
            fig.savefig(self.figurePath('covariateHeatmap'))
        plt.close(fig)

    def plotEigengeneHeatmap(self):
        """
        clustered heatmap of module eigengenes across samples annotated with sample information colors
        """
        if self.MEs.shape[1] < 2:
            print(f"{WARNING}Less than two modules, eigengene heatmap is not plotted.{ENDC}")
            return None

        rowColors = None
        if len(self.metadata_colors) > 0:
            rowColors = pd.DataFrame(index=self.MEs.index)
            for col, cmap in self.metadata_colors.items():
                rowColors[col] = self.datExpr.obs.loc[self.MEs.index, col].astype(object).map(cmap).fillna('white')

        g = sns.clustermap(self.MEs, row_colors=rowColors, cmap='RdBu_r', center=0, metric='euclidean',
                           method='average', yticklabels=False, figsize=(max(8, self.MEs.shape[1] * 0.6), 10))
        g.ax_heatmap.set_xlabel('')
        g.figure.suptitle(f"Module eigengenes of {self.name}")
        if self.save:
            g.savefig(self.figurePath('eigengeneHeatmap'))
        plt.close(g.figure)

    def plotModuleEigenGene(self, moduleName, metadata):
        """
        plot module eigen gene figure in given module
        """
        sampleInfo = self.datExpr.obs

        if moduleName not in self.getModuleName() or "ME" + moduleName not in self.datME.columns:
            print(f"{WARNING}Module name {moduleName} does not exist in {self.name}{ENDC}")
            return None
        if len(metadata) == 0:
            print(f"{WARNING}No metadata given to plot!{ENDC}")
            return None
        missing = [m for m in metadata if m not in self.metadata_colors]
        if len(missing) > 0:
            print(f"{WARNING}Metadata color of {missing} is not set! use setMetadataColor first.{ENDC}")
            return None

        heatmap = scale(self.datExpr.to_df().loc[:, (self.datExpr.var['moduleColors'] == moduleName).values]).T
        ME = pd.DataFrame(self.datME["ME" + moduleName].values, columns=['eigengeneExp'])
        ME['sample_name'] = self.datME.index

        fig, axs = plt.subplots(nrows=3, ncols=2, figsize=(26, len(metadata) * 5),
                                sharex='col', gridspec_kw={
                'height_ratios': [len(metadata) * 0.4, len(metadata) * 0.5, len(metadata) * 1.5],
                'width_ratios': [20, 3]})
        gs = axs[0, 1].get_gridspec()
        # remove the underlying axes
        for ax in axs[:, 1]:
            ax.remove()
        axs_legend = gridspec.GridSpecFromSubplotSpec(len(metadata), 1, subplot_spec=gs[:, 1])

        ind = [i + 0.5 for i in range(ME.shape[0])]
        y = np.repeat(0, len(ind))
        for m in metadata:
            handles = []
            y = np.repeat(3000 * metadata.index(m), len(ind))
            color = sampleInfo.loc[self.datME.index, m].astype(object).map(self.metadata_colors[m]).fillna('white')
            for n in list(self.metadata_colors[m].keys()):
                patch = mpatches.Patch(color=self.metadata_colors[m][n], label=n)
                handles.append(patch)
            axs[0, 0].scatter(ind, y, c=color.values, s=1600, marker='s')
            ax_legend = fig.add_subplot(axs_legend[len(metadata) - 1 - metadata.index(m)])
            ax_legend.legend(title=m, handles=handles)
            ax_legend.axis('off')

        axs[0, 0].set_title(f"Module Eigengene for {moduleName}", size=28, fontweight="bold")
        axs[0, 0].set_ylim(-2000, np.max(y) + 2000)
        axs[0, 0].grid(False)
        axs[0, 0].axis('off')

        axs[1, 0].bar(ind, ME.eigengeneExp, align='center', color='black')
        axs[1, 0].set_ylabel('eigengeneExp')
        axs[1, 0].set_facecolor('white')

        sns.heatmap(heatmap, cmap="RdBu",
                    cbar=False,
                    yticklabels=False, xticklabels=False,
                    ax=axs[2, 0])
        if self.save:
            fig.savefig(self.figurePath('ModuleHeatmapEigengene' + moduleName))
        plt.close(fig)

        return None
